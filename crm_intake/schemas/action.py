from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class Intent(str, Enum):
    CREATE_PERSON = "create_person"
    CREATE_COMPANY = "create_company"
    CREATE_DEAL = "create_deal"
    CREATE_TASK = "create_task"
    ADD_NOTE = "add_note"
    ADD_TO_LIST = "add_to_list"
    UPDATE_RECORD = "update_record"  # classifier may propose, executor rejects
    SEARCH_RECORD = "search_record"


INTENT_LABELS = {
    Intent.CREATE_PERSON: "👤 Create Person",
    Intent.CREATE_COMPANY: "🏢 Create Company",
    Intent.CREATE_DEAL: "💰 Create Deal",
    Intent.CREATE_TASK: "📋 Create Task",
    Intent.ADD_NOTE: "📝 Add Note",
    Intent.ADD_TO_LIST: "📋 Add to List",
}

# Intents whose record links to a company; confirmation offers "Change company"
COMPANY_LINKED_INTENTS = {Intent.CREATE_PERSON, Intent.CREATE_DEAL, Intent.CREATE_TASK}

PREREQUISITE_INTENTS = {Intent.CREATE_COMPANY, Intent.CREATE_PERSON}

ClarificationReason = Literal["missing", "ambiguous", "multiple_matches", "not_found"]


class Clarification(BaseModel):
    field: str
    question: str
    options: Optional[list[str]] = None
    reason: ClarificationReason = "missing"


class PrerequisiteAction(BaseModel):
    intent: Intent
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""


class SuggestedAction(BaseModel):
    """Proposed CRM mutation. Mutated by clarifications/edits, executed once."""

    intent: Intent
    confidence: float = 0.0
    target_object: str = ""
    target_list: Optional[str] = None
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    missing_required: list[str] = Field(default_factory=list)
    clarifications_needed: list[Clarification] = Field(default_factory=list)
    note_title: str = "Telegram conversation"
    prerequisite_actions: list[PrerequisiteAction] = Field(default_factory=list)
    reasoning: str = ""

    @model_validator(mode="after")
    def one_clarification_per_field(self) -> "SuggestedAction":
        seen = set()
        unique = []
        for clarification in self.clarifications_needed:
            if clarification.field in seen:
                continue
            seen.add(clarification.field)
            unique.append(clarification)
        self.clarifications_needed = unique
        return self

    def without_clarification(self, field: str) -> "SuggestedAction":
        remaining = [c for c in self.clarifications_needed if c.field != field]
        return self.model_copy(update={"clarifications_needed": remaining})

    def with_data(self, **changes: Any) -> "SuggestedAction":
        data = {**self.extracted_data, **changes}
        return self.model_copy(update={"extracted_data": {k: v for k, v in data.items() if v is not None}})

    def has_clarification(self, field: str) -> bool:
        return any(c.field == field for c in self.clarifications_needed)


class SearchResult(BaseModel):
    id: str
    name: str
    extra: Optional[str] = None


class CreatedRecord(BaseModel):
    name: str
    url: Optional[str] = None


class ActionResult(BaseModel):
    success: bool
    record_id: Optional[str] = None
    record_url: Optional[str] = None
    note_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    created_prerequisites: list[CreatedRecord] = Field(default_factory=list)

    @staticmethod
    def failure(error: str, code: str = "crm_error") -> "ActionResult":
        return ActionResult(success=False, error=error, error_code=code)
