from conftest import person_action

from crm_intake.schemas.action import Clarification, Intent, PrerequisiteAction, SuggestedAction
from crm_intake.services.company_resolution import resolve_company_reference
from crm_intake.services.target_resolution import (
    SEARCH_RESULTS_KEY,
    enforce_add_to_pattern,
    extract_target_name,
    resolve_selection,
    resolve_target_type,
)


def company_action(**data):
    return SuggestedAction(intent=Intent.CREATE_COMPANY, target_object="companies", extracted_data={"name": "Acme", **data})


class TestEnforceAddToPattern:
    def test_extract_target_name(self):
        assert extract_target_name("add to Investors please") == "Investors"
        assert extract_target_name("Add  to acme") == "acme"
        assert extract_target_name("create a person") is None
        assert extract_target_name(None) is None

    def test_creation_becomes_note_with_target_question(self):
        updated = enforce_add_to_pattern(company_action(), "add to Acme")
        assert updated.intent == Intent.ADD_NOTE
        first = updated.clarifications_needed[0]
        assert first.field == "target_type"
        assert first.options == ["List", "Company", "Person"]
        assert first.question == "Is 'Acme' a list, company, or person?"

    def test_existing_target_question_forces_note(self):
        action = person_action().model_copy(
            update={"clarifications_needed": [Clarification(field="target_type", question="?")]}
        )
        updated = enforce_add_to_pattern(action, "add to Acme")
        assert updated.intent == Intent.ADD_NOTE
        assert len(updated.clarifications_needed) == 1

    def test_other_instruction_untouched(self):
        action = company_action()
        assert enforce_add_to_pattern(action, "create company Acme") is action

    def test_non_creation_intent_untouched(self):
        action = SuggestedAction(intent=Intent.ADD_TO_LIST, extracted_data={"list_name": "Investors"})
        assert enforce_add_to_pattern(action, "add to Investors") is action


class TestResolveTargetType:
    def test_list_with_matches(self, registry):
        investors = registry.add("lists", "Investors")
        action = enforce_add_to_pattern(company_action(), "add to Investors")

        updated = resolve_target_type(action, "List", "add to Investors", registry)

        assert updated.intent == Intent.ADD_TO_LIST
        assert updated.target_object == "lists"
        assert updated.extracted_data["target_type"] == "list"
        assert updated.extracted_data[SEARCH_RESULTS_KEY] == [{"id": investors.id, "name": "Investors", "extra": None}]
        follow_up = updated.clarifications_needed[0]
        assert follow_up.field == "list_selection"
        assert follow_up.options == ["Investors"]
        assert not updated.has_clarification("target_type")

    def test_company_without_matches(self, registry):
        action = enforce_add_to_pattern(company_action(), "add to Zeta")

        updated = resolve_target_type(action, "company", "add to Zeta", registry)

        assert updated.intent == Intent.ADD_NOTE
        follow_up = updated.clarifications_needed[0]
        assert follow_up.field == "company_name"
        assert follow_up.reason == "not_found"
        assert updated.extracted_data["original_target"] == "Zeta"

    def test_unknown_type_is_noop(self, registry):
        action = enforce_add_to_pattern(company_action(), "add to Zeta")
        assert resolve_target_type(action, "spaceship", "add to Zeta", registry) is action
        assert registry.searches == []


class TestResolveSelection:
    def test_list_selection(self, registry):
        registry.add("lists", "Investors")
        action = resolve_target_type(
            enforce_add_to_pattern(company_action(), "add to Investors"), "list", "add to Investors", registry
        )

        updated = resolve_selection(action, "list_selection", "investors")

        assert updated.extracted_data["list_id"] == registry.records["lists"][0].id
        assert updated.extracted_data["list_name"] == "investors"
        assert SEARCH_RESULTS_KEY not in updated.extracted_data
        assert not updated.has_clarification("list_selection")

    def test_company_selection_for_note_sets_parent(self, registry):
        acme = registry.add("companies", "Acme")
        action = resolve_target_type(
            enforce_add_to_pattern(company_action(), "add to Acme"), "company", "add to Acme", registry
        )

        updated = resolve_selection(action, "company_selection", "Acme")

        assert updated.extracted_data["parent_record_id"] == acme.id
        assert updated.extracted_data["parent_object"] == "companies"
        assert updated.extracted_data["company_record_id"] == acme.id

    def test_person_selection_for_list(self):
        action = SuggestedAction(
            intent=Intent.ADD_TO_LIST,
            extracted_data={SEARCH_RESULTS_KEY: [{"id": "p-1", "name": "Jane Doe"}]},
            clarifications_needed=[Clarification(field="person_selection", question="Which person?")],
        )

        updated = resolve_selection(action, "person_selection", "Jane Doe")

        assert updated.extracted_data["record_id"] == "p-1"
        assert updated.extracted_data["record_object"] == "people"

    def test_unknown_name_keeps_text_only(self):
        action = SuggestedAction(intent=Intent.ADD_TO_LIST, extracted_data={SEARCH_RESULTS_KEY: []})
        updated = resolve_selection(action, "list_selection", "Other")
        assert updated.extracted_data == {"list_name": "Other"}


class TestResolveCompanyReference:
    def test_high_match_links_record(self, registry):
        acme = registry.add("companies", "Acme")
        updated = resolve_company_reference(person_action(company="acme"), registry)
        assert updated.extracted_data["company_record_id"] == acme.id
        assert updated.extracted_data["company"] == "Acme"
        assert not updated.clarifications_needed

    def test_ambiguous_match_asks(self, registry):
        for name in ("Acme Inc", "Acme Ltd", "Acme Labs", "Acme Group"):
            registry.add("companies", name)

        updated = resolve_company_reference(person_action(company="Acme"), registry)

        assert "company_record_id" not in updated.extracted_data
        question = updated.clarifications_needed[-1]
        assert question.field == "company_selection"
        assert question.options == ["Acme Inc", "Acme Ltd", "Acme Labs", "Acme Group"]
        assert len(updated.extracted_data[SEARCH_RESULTS_KEY]) == 4

    def test_no_match_left_for_executor(self, registry):
        action = person_action(company="Zeta")
        assert resolve_company_reference(action, registry) is action

    def test_already_resolved(self, registry):
        action = person_action(company="Acme", company_record_id="companies-9")
        assert resolve_company_reference(action, registry) is action
        assert registry.searches == []

    def test_company_prerequisite_skips_search(self, registry):
        action = person_action(company="Acme").model_copy(
            update={"prerequisite_actions": [PrerequisiteAction(intent=Intent.CREATE_COMPANY, extracted_data={"name": "Acme"})]}
        )
        assert resolve_company_reference(action, registry) is action

    def test_note_gets_parent(self, registry):
        acme = registry.add("companies", "Acme")
        action = SuggestedAction(intent=Intent.ADD_NOTE, extracted_data={"company": "Acme"})
        updated = resolve_company_reference(action, registry)
        assert updated.extracted_data["parent_record_id"] == acme.id
        assert updated.extracted_data["parent_object"] == "companies"

    def test_search_failure_leaves_action(self, registry):
        registry.fail_search = True
        action = person_action(company="Acme")
        assert resolve_company_reference(action, registry) is action

    def test_company_intent_not_resolved(self, registry):
        registry.add("companies", "Acme")
        action = company_action(company="Acme")
        assert resolve_company_reference(action, registry) is action
