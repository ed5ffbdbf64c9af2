"""Inline button handling.

Each handler receives the TurnContext of the session that owns the pressed
keyboard plus the callback payload. Buttons are only valid in specific states;
pressing one in any other state is answered with "session expired".
"""

from html import escape
from typing import Callable, Optional

from crm_intake.schemas.callback import TYPE_ANSWER, CallbackAction, parse_callback_data
from crm_intake.schemas.events import CallbackEvent
from crm_intake.schemas.session import (
    AwaitingAssigneeInputState,
    AwaitingAssigneeState,
    AwaitingClarificationState,
    AwaitingEditState,
    AwaitingNoteParentSearchState,
    AwaitingNoteParentTypeState,
)
from crm_intake.services.classifier.base import ClassifierError
from crm_intake.services.clarification import (
    ClarificationStep,
    current_question,
    option_answer,
    skip_remaining,
    start_loop,
)
from crm_intake.services.crm.base import CrmApiError
from crm_intake.services.formatters import FIELD_CONFIG, editable_fields, format_clarification, format_suggested_action
from crm_intake.services.keyboards import (
    assignee_keyboard,
    clarification_keyboard,
    edit_fields_keyboard,
    note_parent_type_keyboard,
)
from crm_intake.services.proposal import NOTE_PARENT_PROMPT, execute_current, show_proposal
from crm_intake.services.result import CLASSIFIER_ERROR, CRM_ERROR, INVALID_STATE, NOT_OWNER, Result
from crm_intake.services.state_machine import ConversationState
from crm_intake.services.turn import TurnContext

S = ConversationState

NOTE_PARENT_LABELS = {"companies": "company", "people": "person", "deals": "deal"}


class CallbackError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def _require(turn: TurnContext, *states: ConversationState) -> None:
    if turn.state not in states or turn.session.current_action is None:
        raise CallbackError(f"'{turn.state.value}' does not accept this button")


def present_step(turn: TurnContext, step: ClarificationStep) -> Result:
    """Next question, or back to confirmation once the walk is over."""
    if step.done:
        return show_proposal(turn, step.action)
    question = step.question
    message_id = turn.show(
        format_clarification(question.question, step.state.index + 1, len(step.state.questions)),
        clarification_keyboard(question.options),
    )
    turn.move_to(
        step.state,
        current_action=step.action,
        last_bot_message_id=message_id or turn.session.last_bot_message_id,
    )
    return Result.success(step.action)


def answer_clarification(turn: TurnContext, state: AwaitingClarificationState, answer: str) -> Result:
    services = turn.services
    try:
        step = services.clarifier.answer(
            state,
            turn.session.current_action,
            answer,
            instruction=turn.session.current_instruction,
            schema=turn.session.schema_cache,
        )
    except ClassifierError as e:
        turn.log.error(f"Clarification failed: {e}")
        turn.reply("❌ Error: could not process that answer. Try again or press Skip.")
        return Result.from_exception(e, CLASSIFIER_ERROR)
    except CrmApiError as e:
        turn.log.error(f"Clarification search failed: {e}")
        turn.reply("❌ Error: CRM search failed. Try again or press Skip.")
        return Result.from_exception(e, CRM_ERROR)
    return present_step(turn, step)


# --- confirmation ---


def handle_confirm(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CONFIRMATION)
    turn.answer()
    return execute_current(turn)


def handle_cancel(turn: TurnContext, payload: Optional[str]) -> Result:
    turn.answer()
    turn.show("❌ Cancelled.")
    turn.reset("cancelled")
    return Result.success(None)


def handle_edit(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CONFIRMATION)
    turn.answer()
    fields = editable_fields(turn.session.current_action)
    text = f"{format_suggested_action(turn.session.current_action)}\n\n✏️ Which field do you want to edit?"
    turn.show(text, edit_fields_keyboard(fields))
    return Result.success(None)


def handle_edit_field(turn: TurnContext, field: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CONFIRMATION)
    if not field:
        raise CallbackError("No field selected")

    if field == "assignee":
        return show_assignees(turn)

    turn.answer()
    current = turn.session.current_action.extracted_data.get(field)
    label = FIELD_CONFIG.get(field, (field.replace("_", " ").capitalize(), 0))[0]
    shown = escape(str(current)) if current not in (None, "") else "(empty)"
    turn.show(f"✏️ Editing: {escape(label)}\nCurrent value: {shown}\n\nPlease type the new value:")
    turn.move_to(AwaitingEditState(field=field, original_value=current))
    return Result.success(None)


# --- clarification ---


def handle_clarify(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CONFIRMATION)
    state = start_loop(turn.session.current_action)
    if state is None:
        turn.answer("No clarifications needed")
        return Result.success(None)
    turn.answer()
    return present_step(turn, ClarificationStep(turn.session.current_action, state))


def handle_clarify_option(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CLARIFICATION, S.AWAITING_CONFIRMATION)

    if turn.state == S.AWAITING_CONFIRMATION:
        # Options pressed straight from the proposal answer its first question
        state = start_loop(turn.session.current_action)
        if state is None:
            raise CallbackError("No pending question")
    else:
        state = turn.session.state

    question = current_question(state)
    if question is None:
        raise CallbackError("No pending question")

    if payload == TYPE_ANSWER:
        turn.answer()
        turn.show(f"💬 Please type your answer for: {escape(question.question)}")
        if turn.state != S.AWAITING_CLARIFICATION:
            turn.move_to(state)
        return Result.success(None)

    answer = option_answer(question, payload)
    if answer is None:
        raise CallbackError(f"Unknown option '{payload}'")

    turn.answer()
    return answer_clarification(turn, state, answer)


def handle_skip(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_CLARIFICATION, S.AWAITING_CONFIRMATION)
    turn.answer()
    return show_proposal(turn, skip_remaining(turn.session.current_action))


# --- assignee ---


def show_assignees(turn: TurnContext, page: int = 0) -> Result:
    schema = turn.session.schema_cache
    members = schema.workspace_members if schema else []
    if not members:
        turn.answer("No workspace members available", show_alert=True)
        return Result.failure("No workspace members", INVALID_STATE)

    turn.answer()
    page_size = turn.services.assignee_page_size
    page = min(max(page, 0), (len(members) - 1) // page_size)
    turn.show("👤 Select assignee:", assignee_keyboard(members, page, page_size))
    turn.move_to(AwaitingAssigneeState(page=page, members=members))
    return Result.success(None)


def handle_assignee_select(turn: TurnContext, member_id: Optional[str]) -> Result:
    _require(turn, S.AWAITING_ASSIGNEE)
    member = next((m for m in turn.session.state.members if m.id == member_id), None)
    if member is None:
        raise CallbackError(f"Unknown member '{member_id}'")
    turn.answer()
    name = member.full_name or member.email
    action = turn.session.current_action.with_data(
        assignee=name, assignee_id=member.id, assignee_email=member.email or None
    )
    return show_proposal(turn, action, prefix=f"✅ Assignee set to {escape(name)}")


def handle_assignee_page(step: int) -> Callable[[TurnContext, Optional[str]], Result]:
    def handler(turn: TurnContext, payload: Optional[str]) -> Result:
        _require(turn, S.AWAITING_ASSIGNEE)
        return show_assignees(turn, turn.session.state.page + step)

    return handler


def handle_assignee_manual(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_ASSIGNEE)
    turn.answer()
    turn.show("✏️ Type the assignee's name (or \"me\"):")
    turn.move_to(AwaitingAssigneeInputState())
    return Result.success(None)


def handle_assignee_skip(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_ASSIGNEE)
    turn.answer()
    action = turn.session.current_action.with_data(assignee=None, assignee_id=None, assignee_email=None)
    return show_proposal(turn, action)


# --- note parent ---


def handle_note_parent_type(turn: TurnContext, parent_type: Optional[str]) -> Result:
    _require(turn, S.AWAITING_NOTE_PARENT_TYPE)
    if parent_type not in NOTE_PARENT_LABELS:
        raise CallbackError(f"Unknown record type '{parent_type}'")
    turn.answer()
    turn.show(f"🔍 Search for a {NOTE_PARENT_LABELS[parent_type]}:")
    turn.move_to(AwaitingNoteParentSearchState(parent_type=parent_type))
    return Result.success(None)


def handle_note_parent_select(turn: TurnContext, record_id: Optional[str]) -> Result:
    _require(turn, S.AWAITING_NOTE_PARENT_SELECTION)
    state = turn.session.state
    record = next((r for r in state.results if r.id == record_id), None)
    if record is None:
        raise CallbackError(f"Unknown record '{record_id}'")
    turn.answer()
    action = turn.session.current_action.with_data(parent_object=state.parent_type, parent_record_id=record.id)
    return show_proposal(turn, action, prefix=f"📎 Note goes to {escape(record.name)}")


def handle_note_parent_search_again(turn: TurnContext, payload: Optional[str]) -> Result:
    _require(turn, S.AWAITING_NOTE_PARENT_SELECTION, S.AWAITING_NOTE_PARENT_SEARCH)
    turn.answer()
    turn.show(NOTE_PARENT_PROMPT, note_parent_type_keyboard())
    turn.move_to(AwaitingNoteParentTypeState())
    return Result.success(None)


def handle_noop(turn: TurnContext, payload: Optional[str]) -> Result:
    turn.answer()
    return Result.success(None)


CALLBACK_HANDLERS = {
    CallbackAction.CONFIRM: handle_confirm,
    CallbackAction.EDIT: handle_edit,
    CallbackAction.CANCEL: handle_cancel,
    CallbackAction.CLARIFY: handle_clarify,
    CallbackAction.CLARIFY_OPTION: handle_clarify_option,
    CallbackAction.SKIP: handle_skip,
    CallbackAction.EDIT_FIELD: handle_edit_field,
    CallbackAction.ASSIGNEE_SELECT: handle_assignee_select,
    CallbackAction.ASSIGNEE_PREV: handle_assignee_page(-1),
    CallbackAction.ASSIGNEE_NEXT: handle_assignee_page(1),
    CallbackAction.ASSIGNEE_MANUAL: handle_assignee_manual,
    CallbackAction.ASSIGNEE_SKIP: handle_assignee_skip,
    CallbackAction.NOTE_PARENT_TYPE: handle_note_parent_type,
    CallbackAction.NOTE_PARENT_SELECT: handle_note_parent_select,
    CallbackAction.NOTE_PARENT_SEARCH: handle_note_parent_search_again,
    CallbackAction.NOOP: handle_noop,
}


def process_callback(turn: TurnContext) -> Result:
    """Ownership check, then dispatch on the button's action."""
    event: CallbackEvent = turn.event
    callback = parse_callback_data(event.data)

    handler = CALLBACK_HANDLERS.get(callback.action)
    if handler is None:
        turn.log.warning(f"Unknown callback data '{event.data}'")
        turn.answer()
        return Result.failure(f"Unknown callback '{event.data}'", INVALID_STATE)

    if callback.action != CallbackAction.NOOP and not turn.session.is_owned_by(event.user_id):
        turn.log.warning(
            f"User {event.user_id} pressed {callback.action} on a foreign action",
            context={"owner": turn.session.initiating_user_id},
        )
        turn.answer("This action belongs to another user", show_alert=True)
        return Result.failure("Action belongs to another user", NOT_OWNER)

    try:
        return handler(turn, callback.payload)
    except CallbackError as e:
        turn.log.info(f"Rejected {callback.action}: {e.message}")
        return turn.expired()
