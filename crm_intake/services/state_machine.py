from enum import Enum


class ConversationState(str, Enum):
    IDLE = "idle"
    GATHERING_MESSAGES = "gathering_messages"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    AWAITING_EDIT = "awaiting_edit"
    AWAITING_ASSIGNEE = "awaiting_assignee"
    AWAITING_ASSIGNEE_INPUT = "awaiting_assignee_input"
    AWAITING_NOTE_PARENT_TYPE = "awaiting_note_parent_type"
    AWAITING_NOTE_PARENT_SEARCH = "awaiting_note_parent_search"
    AWAITING_NOTE_PARENT_SELECTION = "awaiting_note_parent_selection"
    EXECUTING = "executing"


S = ConversationState

VALID_TRANSITIONS = {
    S.IDLE: [S.GATHERING_MESSAGES],
    S.GATHERING_MESSAGES: [S.GATHERING_MESSAGES],
    S.AWAITING_CONFIRMATION: [
        S.AWAITING_CONFIRMATION,
        S.AWAITING_CLARIFICATION,
        S.AWAITING_EDIT,
        S.AWAITING_ASSIGNEE,
        S.AWAITING_NOTE_PARENT_TYPE,
        S.EXECUTING,
    ],
    S.AWAITING_CLARIFICATION: [S.AWAITING_CLARIFICATION],
    S.AWAITING_EDIT: [],
    S.AWAITING_ASSIGNEE: [S.AWAITING_ASSIGNEE, S.AWAITING_ASSIGNEE_INPUT],
    S.AWAITING_ASSIGNEE_INPUT: [],
    S.AWAITING_NOTE_PARENT_TYPE: [S.AWAITING_NOTE_PARENT_SEARCH],
    S.AWAITING_NOTE_PARENT_SEARCH: [S.AWAITING_NOTE_PARENT_SELECTION, S.AWAITING_NOTE_PARENT_TYPE],
    S.AWAITING_NOTE_PARENT_SELECTION: [S.AWAITING_NOTE_PARENT_SEARCH, S.AWAITING_NOTE_PARENT_TYPE],
    S.EXECUTING: [S.IDLE],
}

# Reset and a fresh proposal are reachable from everywhere
UNIVERSAL_TARGETS = {S.IDLE, S.AWAITING_CONFIRMATION}

# States in which a forwarded message also changes the state
GATHERING_STATES = {S.IDLE, S.GATHERING_MESSAGES}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConversationState, to_state: ConversationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if transition is valid."""
    if to_state in UNIVERSAL_TARGETS:
        return True
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConversationState, to_state: ConversationState) -> ConversationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def after_forward(current_state: ConversationState) -> ConversationState:
    """State after a forwarded message is queued."""
    if current_state in GATHERING_STATES:
        return transition(current_state, S.GATHERING_MESSAGES)
    return current_state
