"""Question-by-question repair of a SuggestedAction.

The loop walks a snapshot of the questions taken when it starts. Answers may
add or remove clarifications on the action itself, but the walk only ever
advances through the snapshot.
"""

from dataclasses import dataclass
from typing import Optional, Union

from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import Clarification, SuggestedAction
from crm_intake.schemas.callback import TYPE_ANSWER
from crm_intake.schemas.session import AwaitingClarificationState, AwaitingConfirmationState, CrmSchema
from crm_intake.services.classifier.base import IntentClassifier
from crm_intake.services.company_resolution import resolve_company_reference
from crm_intake.services.crm.base import CrmRegistry
from crm_intake.services.target_resolution import (
    SEARCH_RESULTS_KEY,
    TARGET_TYPE_FIELD,
    is_selection_clarification,
    resolve_selection,
    resolve_target_type,
)

logger = get_logger("clarification")


@dataclass
class ClarificationStep:
    action: SuggestedAction
    state: Union[AwaitingClarificationState, AwaitingConfirmationState]

    @property
    def done(self) -> bool:
        return isinstance(self.state, AwaitingConfirmationState)

    @property
    def question(self) -> Optional[Clarification]:
        if self.done:
            return None
        return self.state.questions[self.state.index]


def start_loop(action: SuggestedAction) -> Optional[AwaitingClarificationState]:
    if not action.clarifications_needed:
        return None
    return AwaitingClarificationState(index=0, questions=list(action.clarifications_needed))


def current_question(state: AwaitingClarificationState) -> Optional[Clarification]:
    if 0 <= state.index < len(state.questions):
        return state.questions[state.index]
    return None


def option_answer(question: Clarification, payload: Optional[str]) -> Optional[str]:
    """Option text behind a button payload. None for "type answer" or an unknown option."""
    if payload is None or payload == TYPE_ANSWER:
        return None
    options = question.options or []
    try:
        index = int(payload)
    except ValueError:
        return payload if payload in options else None
    if 0 <= index < len(options):
        return options[index]
    return None


def skip_remaining(action: SuggestedAction) -> SuggestedAction:
    """Drop every outstanding question, keeping what was already extracted."""
    data = {k: v for k, v in action.extracted_data.items() if k != SEARCH_RESULTS_KEY}
    return action.model_copy(update={"clarifications_needed": [], "extracted_data": data})


class ClarificationLoop:
    def __init__(self, classifier: IntentClassifier, registry: CrmRegistry):
        self.classifier = classifier
        self.registry = registry

    def apply_answer(
        self,
        action: SuggestedAction,
        field: str,
        answer: str,
        instruction: Optional[str],
        schema: Optional[CrmSchema],
    ) -> SuggestedAction:
        """Deterministic resolvers first; anything else goes back through the classifier."""
        if field == TARGET_TYPE_FIELD:
            updated = resolve_target_type(action, answer, instruction, self.registry)
            if updated is action:
                # Not an "add to X" instruction after all
                updated = self.classifier.process_clarification(action, field, answer, schema)
        elif is_selection_clarification(field):
            updated = resolve_selection(action, field, answer)
        else:
            updated = self.classifier.process_clarification(action, field, answer, schema)

        return resolve_company_reference(updated, self.registry)

    def advance(self, state: AwaitingClarificationState, updated: SuggestedAction) -> ClarificationStep:
        if updated.clarifications_needed and state.index + 1 < len(state.questions):
            next_state = AwaitingClarificationState(index=state.index + 1, questions=state.questions)
            return ClarificationStep(updated, next_state)
        return ClarificationStep(updated, AwaitingConfirmationState(action=updated))

    def answer(
        self,
        state: AwaitingClarificationState,
        action: SuggestedAction,
        answer: str,
        instruction: Optional[str] = None,
        schema: Optional[CrmSchema] = None,
    ) -> ClarificationStep:
        question = current_question(state)
        if question is None:
            return ClarificationStep(action, AwaitingConfirmationState(action=action))

        updated = self.apply_answer(action, question.field, answer, instruction, schema)
        step = self.advance(state, updated)
        logger.info(
            f"Clarification '{question.field}' answered ({state.index + 1}/{len(state.questions)})",
            extra={"context": {"remaining": len(updated.clarifications_needed), "done": step.done}},
        )
        return step
