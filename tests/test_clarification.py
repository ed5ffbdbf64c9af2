import pytest
from conftest import person_action, with_questions

from crm_intake.schemas.action import Clarification, Intent, SuggestedAction
from crm_intake.schemas.session import AwaitingClarificationState
from crm_intake.services.clarification import (
    ClarificationLoop,
    current_question,
    option_answer,
    skip_remaining,
    start_loop,
)


@pytest.fixture
def loop(classifier, registry):
    return ClarificationLoop(classifier, registry)


class TestLoopHelpers:
    def test_start_loop_snapshots_questions(self):
        action = with_questions(person_action(), "email", "phone")
        state = start_loop(action)
        assert state.index == 0
        assert [q.field for q in state.questions] == ["email", "phone"]

    def test_start_loop_without_questions(self):
        assert start_loop(person_action()) is None

    def test_current_question_out_of_range(self):
        state = AwaitingClarificationState(index=3, questions=[Clarification(field="email", question="?")])
        assert current_question(state) is None

    def test_option_answer(self):
        question = Clarification(field="target_type", question="?", options=["List", "Company", "Person"])
        assert option_answer(question, "1") == "Company"
        assert option_answer(question, "Person") == "Person"
        assert option_answer(question, "7") is None
        assert option_answer(question, "__type__") is None
        assert option_answer(question, "Spaceship") is None

    def test_skip_remaining(self):
        action = with_questions(person_action(search_results=[{"id": "x", "name": "X"}]), "email")
        skipped = skip_remaining(action)
        assert skipped.clarifications_needed == []
        assert "search_results" not in skipped.extracted_data
        assert skipped.extracted_data["name"] == "Jane Doe"


class TestClarificationLoop:
    def test_answer_advances_through_snapshot(self, loop, classifier):
        action = with_questions(person_action(), "email", "phone")
        state = start_loop(action)

        step = loop.answer(state, action, "jane@acme.com")

        assert classifier.clarification_calls == [("email", "jane@acme.com")]
        assert step.done is False
        assert step.state.index == 1
        assert step.question.field == "phone"
        assert step.action.extracted_data["email"] == "jane@acme.com"

    def test_last_answer_returns_to_confirmation(self, loop):
        action = with_questions(person_action(), "email")
        step = loop.answer(start_loop(action), action, "jane@acme.com")
        assert step.done is True
        assert step.state.action == step.action

    def test_stops_early_when_nothing_left(self, loop, classifier):
        def answers_everything(action, field, answer, schema):
            return action.model_copy(update={"clarifications_needed": []})

        classifier.on_clarification = answers_everything
        action = with_questions(person_action(), "email", "phone")

        step = loop.answer(start_loop(action), action, "jane@acme.com, 555 0100")

        assert step.done is True

    def test_new_questions_do_not_extend_walk(self, loop, classifier):
        def adds_question(action, field, answer, schema):
            extra = Clarification(field="job_title", question="Role?")
            return action.without_clarification(field).model_copy(
                update={"clarifications_needed": [*action.without_clarification(field).clarifications_needed, extra]}
            )

        classifier.on_clarification = adds_question
        action = with_questions(person_action(), "email")

        step = loop.answer(start_loop(action), action, "jane@acme.com")

        assert step.done is True
        assert step.action.has_clarification("job_title")

    def test_target_type_uses_registry_not_classifier(self, loop, classifier, registry):
        registry.add("lists", "Investors")
        action = SuggestedAction(
            intent=Intent.ADD_NOTE,
            clarifications_needed=[Clarification(field="target_type", question="?", options=["List", "Company", "Person"])],
        )

        step = loop.answer(start_loop(action), action, "List", instruction="add to Investors")

        assert classifier.clarification_calls == []
        assert step.action.intent == Intent.ADD_TO_LIST
        assert step.action.has_clarification("list_selection")
        # The follow-up is not part of the snapshot, so the walk ends here
        assert step.done is True

    def test_target_type_without_add_to_falls_back_to_classifier(self, loop, classifier):
        action = SuggestedAction(
            intent=Intent.ADD_NOTE, clarifications_needed=[Clarification(field="target_type", question="?")]
        )
        loop.answer(start_loop(action), action, "Company", instruction="note this")
        assert classifier.clarification_calls == [("target_type", "Company")]

    def test_selection_resolved_deterministically(self, loop, classifier):
        action = SuggestedAction(
            intent=Intent.ADD_TO_LIST,
            extracted_data={"search_results": [{"id": "l-1", "name": "Investors"}]},
            clarifications_needed=[Clarification(field="list_selection", question="Which list?", options=["Investors"])],
        )

        step = loop.answer(start_loop(action), action, "Investors")

        assert classifier.clarification_calls == []
        assert step.action.extracted_data["list_id"] == "l-1"

    def test_company_answer_is_resolved_against_crm(self, loop, registry):
        acme = registry.add("companies", "Acme")
        action = with_questions(person_action(), "company")

        step = loop.answer(start_loop(action), action, "Acme")

        assert step.action.extracted_data["company_record_id"] == acme.id
        assert step.done is True
