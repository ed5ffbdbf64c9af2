import json
import re
from typing import Optional, Sequence

from pydantic import ValidationError

from crm_intake.config import settings
from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import SuggestedAction
from crm_intake.schemas.session import CrmSchema, ForwardedMessage
from crm_intake.services.classifier.base import ClassifierError, IntentClassifier
from crm_intake.services.classifier.prompts import build_analyze_messages, build_clarification_messages
from crm_intake.services.llm import LLMError, LLMProvider, OpenAIProvider

logger = get_logger("classifier")

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_action(content: str) -> SuggestedAction:
    """Parse the model reply into a SuggestedAction. Raises ClassifierError."""
    payload = None
    try:
        payload = json.loads(content)
    except (TypeError, ValueError):
        match = _JSON_OBJECT_RE.search(content or "")
        if match:
            try:
                payload = json.loads(match.group(0))
            except ValueError:
                payload = None

    if not isinstance(payload, dict):
        raise ClassifierError("Classifier reply is not a JSON object")

    try:
        return SuggestedAction.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Classifier reply failed validation: {e}")
        raise ClassifierError(f"Classifier reply has an invalid shape: {e.error_count()} errors") from e


class LLMIntentClassifier(IntentClassifier):
    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    def _complete(self, messages: list[dict]) -> SuggestedAction:
        try:
            response = self.provider.generate(messages, model=self.model, json_mode=True)
        except LLMError as e:
            raise ClassifierError(str(e)) from e
        return parse_action(response.content)

    def analyze(
        self,
        messages: Sequence[ForwardedMessage],
        instruction: str,
        schema: Optional[CrmSchema],
    ) -> SuggestedAction:
        action = self._complete(build_analyze_messages(messages, instruction, schema))
        logger.info(
            f"Classified as {action.intent.value} ({action.confidence:.2f})",
            extra={"context": {"messages": len(messages), "clarifications": len(action.clarifications_needed)}},
        )
        return action

    def process_clarification(
        self,
        action: SuggestedAction,
        field: str,
        answer: str,
        schema: Optional[CrmSchema],
    ) -> SuggestedAction:
        updated = self._complete(build_clarification_messages(action, field, answer, schema))
        # The answered question must not come back
        return updated.without_clarification(field)


_classifier: Optional[LLMIntentClassifier] = None


def get_classifier() -> LLMIntentClassifier:
    """Get or create the classifier instance."""
    global _classifier
    if _classifier is None:
        provider = OpenAIProvider(api_key=settings.openai_api_key or "", default_model=settings.classifier_model)
        _classifier = LLMIntentClassifier(provider)
    return _classifier
