import pytest

from crm_intake.services.state_machine import (
    ConversationState,
    InvalidTransitionError,
    after_forward,
    can_transition,
    transition,
)

S = ConversationState


class TestValidTransitions:
    def test_idle_to_gathering(self):
        assert transition(S.IDLE, S.GATHERING_MESSAGES) == S.GATHERING_MESSAGES

    def test_gathering_stays_gathering(self):
        assert transition(S.GATHERING_MESSAGES, S.GATHERING_MESSAGES) == S.GATHERING_MESSAGES

    def test_confirmation_to_clarification(self):
        assert transition(S.AWAITING_CONFIRMATION, S.AWAITING_CLARIFICATION) == S.AWAITING_CLARIFICATION

    def test_clarification_advances(self):
        assert transition(S.AWAITING_CLARIFICATION, S.AWAITING_CLARIFICATION) == S.AWAITING_CLARIFICATION

    def test_assignee_page_flip(self):
        assert transition(S.AWAITING_ASSIGNEE, S.AWAITING_ASSIGNEE) == S.AWAITING_ASSIGNEE

    def test_note_parent_flow(self):
        assert transition(S.AWAITING_NOTE_PARENT_TYPE, S.AWAITING_NOTE_PARENT_SEARCH) == S.AWAITING_NOTE_PARENT_SEARCH
        assert (
            transition(S.AWAITING_NOTE_PARENT_SEARCH, S.AWAITING_NOTE_PARENT_SELECTION)
            == S.AWAITING_NOTE_PARENT_SELECTION
        )

    def test_any_state_can_reset_to_idle(self):
        for state in ConversationState:
            assert can_transition(state, S.IDLE)

    def test_any_state_can_show_a_proposal(self):
        for state in ConversationState:
            assert can_transition(state, S.AWAITING_CONFIRMATION)


class TestInvalidTransitions:
    def test_idle_to_executing(self):
        with pytest.raises(InvalidTransitionError):
            transition(S.IDLE, S.EXECUTING)

    def test_clarification_to_executing(self):
        with pytest.raises(InvalidTransitionError):
            transition(S.AWAITING_CLARIFICATION, S.EXECUTING)

    def test_edit_to_assignee(self):
        with pytest.raises(InvalidTransitionError):
            transition(S.AWAITING_EDIT, S.AWAITING_ASSIGNEE)

    def test_error_names_both_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(S.GATHERING_MESSAGES, S.AWAITING_EDIT)
        assert exc_info.value.from_state == S.GATHERING_MESSAGES
        assert exc_info.value.to_state == S.AWAITING_EDIT
        assert "gathering_messages -> awaiting_edit" in str(exc_info.value)


class TestHelperFunctions:
    def test_forward_while_idle_starts_gathering(self):
        assert after_forward(S.IDLE) == S.GATHERING_MESSAGES

    def test_forward_while_confirming_keeps_state(self):
        assert after_forward(S.AWAITING_CONFIRMATION) == S.AWAITING_CONFIRMATION

    def test_execution_starts_only_from_confirmation(self):
        assert transition(S.AWAITING_CONFIRMATION, S.EXECUTING) == S.EXECUTING
        with pytest.raises(InvalidTransitionError):
            transition(S.GATHERING_MESSAGES, S.EXECUTING)

    def test_execution_ends_idle_or_back_at_confirmation(self):
        assert can_transition(S.EXECUTING, S.IDLE)
        assert can_transition(S.EXECUTING, S.AWAITING_CONFIRMATION)
        assert not can_transition(S.EXECUTING, S.AWAITING_EDIT)
