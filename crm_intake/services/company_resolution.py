from typing import Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import COMPANY_LINKED_INTENTS, Intent, SuggestedAction
from crm_intake.services.crm.base import CrmApiError, CrmRegistry
from crm_intake.services.matching import match_confidence, parse_company_input
from crm_intake.services.target_resolution import MAX_OPTIONS, SEARCH_RESULTS_KEY, selection_clarification

logger = get_logger("company_resolution")

COMPANY_REFERENCE_KEYS = ("company", "associated_company")
RESOLVING_INTENTS = COMPANY_LINKED_INTENTS | {Intent.ADD_NOTE}


def company_reference(action: SuggestedAction) -> Optional[str]:
    for key in COMPANY_REFERENCE_KEYS:
        value = action.extracted_data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def has_company_prerequisite(action: SuggestedAction) -> bool:
    return any(p.intent == Intent.CREATE_COMPANY for p in action.prerequisite_actions)


def resolve_company_reference(action: SuggestedAction, registry: CrmRegistry) -> SuggestedAction:
    """Link a free-text company reference to an existing record when the match is certain.

    high: company_record_id is set. medium/low: the user is asked to pick.
    none: left alone so the executor creates the company.
    """
    if action.intent not in RESOLVING_INTENTS:
        return action
    if action.extracted_data.get("company_record_id") or action.has_clarification("company_selection"):
        return action
    if has_company_prerequisite(action):
        return action

    reference = company_reference(action)
    if not reference:
        return action

    parsed = parse_company_input(reference)
    try:
        results = registry.search_records("companies", parsed.name)
    except CrmApiError as e:
        logger.warning(f"Company search failed for '{reference}': {e}")
        return action

    result = match_confidence(reference, results, parsed.name, parsed.domain)
    logger.info(
        f"Company reference '{reference}' -> {result.confidence}",
        extra={"context": {"reason": result.reason, "candidates": len(results)}},
    )

    if result.confidence == "none":
        return action

    if result.confidence == "high":
        top = results[0]
        changes = {"company": top.name, "company_record_id": top.id}
        if action.intent == Intent.ADD_NOTE and not action.extracted_data.get("parent_record_id"):
            changes.update(parent_record_id=top.id, parent_object="companies")
        return action.with_data(**changes)

    data = {**action.extracted_data, SEARCH_RESULTS_KEY: [r.model_dump() for r in results[:MAX_OPTIONS]]}
    clarification = selection_clarification("company", reference, results)
    return action.model_copy(
        update={
            "extracted_data": data,
            "clarifications_needed": [*action.clarifications_needed, clarification],
        }
    )
