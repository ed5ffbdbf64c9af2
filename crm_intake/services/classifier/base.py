from abc import ABC, abstractmethod
from typing import Optional, Sequence

from crm_intake.schemas.action import SuggestedAction
from crm_intake.schemas.session import CrmSchema, ForwardedMessage


class ClassifierError(Exception):
    """The classifier could not produce a usable proposal."""


class IntentClassifier(ABC):
    """Turns conversation content into a proposed CRM action. No side effects."""

    @abstractmethod
    def analyze(
        self,
        messages: Sequence[ForwardedMessage],
        instruction: str,
        schema: Optional[CrmSchema],
    ) -> SuggestedAction:
        pass

    @abstractmethod
    def process_clarification(
        self,
        action: SuggestedAction,
        field: str,
        answer: str,
        schema: Optional[CrmSchema],
    ) -> SuggestedAction:
        """Apply one answer. The returned action may gain or lose clarifications."""
