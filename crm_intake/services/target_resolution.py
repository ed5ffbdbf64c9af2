"""Deterministic handling of "add to X" instructions.

The classifier is asked to clarify whether X is a list, company or person but
sometimes proposes a record creation instead. enforce_add_to_pattern corrects
that, and the resolve_* helpers apply the user's answers.
"""

import re
from typing import Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import Clarification, Intent, SearchResult, SuggestedAction
from crm_intake.services.crm.base import CrmRegistry

logger = get_logger("target_resolution")

ADD_TO_PATTERN = re.compile(r"^add\s+to\s+(\S+)", re.IGNORECASE)

CREATION_INTENTS = {Intent.CREATE_COMPANY, Intent.CREATE_PERSON, Intent.CREATE_DEAL, Intent.CREATE_TASK}

TARGET_TYPE_FIELD = "target_type"
TARGET_TYPE_OPTIONS = ["List", "Company", "Person"]

TARGET_TYPE_TO_OBJECT = {
    "company": "companies",
    "person": "people",
    "list": "lists",
}

SELECTION_FIELDS = {"company_selection", "person_selection", "list_selection"}

MAX_OPTIONS = 5

# Working keys kept in extracted_data while a selection is pending
SEARCH_RESULTS_KEY = "search_results"


def extract_target_name(instruction: Optional[str]) -> Optional[str]:
    match = ADD_TO_PATTERN.match((instruction or "").strip())
    return match.group(1) if match else None


def target_type_clarification(target_name: str) -> Clarification:
    return Clarification(
        field=TARGET_TYPE_FIELD,
        question=f"Is '{target_name}' a list, company, or person?",
        options=list(TARGET_TYPE_OPTIONS),
        reason="ambiguous",
    )


def enforce_add_to_pattern(action: SuggestedAction, instruction: Optional[str]) -> SuggestedAction:
    target_name = extract_target_name(instruction)
    if not target_name:
        return action

    if action.has_clarification(TARGET_TYPE_FIELD):
        if action.intent != Intent.ADD_NOTE:
            return action.model_copy(update={"intent": Intent.ADD_NOTE})
        return action

    if action.intent in CREATION_INTENTS:
        logger.info(
            f"Overriding {action.intent.value} for 'add to {target_name}'",
            extra={"context": {"target": target_name}},
        )
        return action.model_copy(
            update={
                "intent": Intent.ADD_NOTE,
                "clarifications_needed": [target_type_clarification(target_name), *action.clarifications_needed],
            }
        )

    return action


def is_selection_clarification(field: str) -> bool:
    return field in SELECTION_FIELDS


def selection_clarification(kind: str, target_name: str, results: list[SearchResult]) -> Clarification:
    return Clarification(
        field=f"{kind}_selection",
        question=f'Which {kind} is "{target_name}"?',
        options=[r.name for r in results[:MAX_OPTIONS]],
        reason="multiple_matches",
    )


def resolve_target_type(
    action: SuggestedAction,
    target_type: str,
    instruction: Optional[str],
    registry: CrmRegistry,
) -> SuggestedAction:
    """Search the chosen registry for the "add to X" name and queue the follow-up question."""
    target_name = extract_target_name(instruction)
    kind = target_type.strip().lower()
    object_type = TARGET_TYPE_TO_OBJECT.get(kind)
    if not target_name or not object_type:
        return action

    results = registry.search_records(object_type, target_name)
    remaining = [c for c in action.clarifications_needed if c.field != TARGET_TYPE_FIELD]
    intent = Intent.ADD_TO_LIST if kind == "list" else Intent.ADD_NOTE
    data = {**action.extracted_data, "target_type": kind}

    if results:
        follow_up = selection_clarification(kind, target_name, results)
        data[SEARCH_RESULTS_KEY] = [r.model_dump() for r in results[:MAX_OPTIONS]]
    else:
        follow_up = Clarification(
            field=f"{kind}_name",
            question=f'No {kind} found matching "{target_name}". What is the full {kind} name?',
            reason="not_found",
        )
        data["original_target"] = target_name

    logger.info(f"Target type '{kind}' for '{target_name}': {len(results)} matches")
    return action.model_copy(
        update={
            "intent": intent,
            "target_object": object_type,
            "extracted_data": data,
            "clarifications_needed": [follow_up, *remaining],
        }
    )


def resolve_selection(action: SuggestedAction, field: str, selected_name: str) -> SuggestedAction:
    """Map a picked option back to its record id and drop the selection question."""
    stored = action.extracted_data.get(SEARCH_RESULTS_KEY) or []
    record = next(
        (SearchResult.model_validate(r) for r in stored if str(r.get("name", "")).lower() == selected_name.lower()),
        None,
    )

    data = {k: v for k, v in action.extracted_data.items() if k != SEARCH_RESULTS_KEY}
    if field == "company_selection":
        data["company"] = selected_name
        if record:
            data["company_record_id"] = record.id
            if action.intent == Intent.ADD_TO_LIST:
                data["record_id"] = record.id
                data["record_object"] = "companies"
            elif action.intent == Intent.ADD_NOTE:
                data["parent_record_id"] = record.id
                data["parent_object"] = "companies"
    elif field == "person_selection":
        data["person"] = selected_name
        if record:
            if action.intent == Intent.ADD_TO_LIST:
                data["record_id"] = record.id
                data["record_object"] = "people"
            else:
                data["parent_record_id"] = record.id
                data["parent_object"] = "people"
    elif field == "list_selection":
        data["list_name"] = selected_name
        if record:
            data["list_id"] = record.id

    return action.model_copy(
        update={
            "extracted_data": data,
            "clarifications_needed": [c for c in action.clarifications_needed if c.field != field],
        }
    )
