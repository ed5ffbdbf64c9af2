"""Typed views over SuggestedAction.extracted_data.

The classifier returns an open string-keyed map. Each intent reads it through
one of the models below: known aliases collapse into named optional fields and
everything else is kept in ``extra`` so it can still be shown to the user.
"""

import re
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from crm_intake.schemas.action import Intent


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _first_text(value: Any) -> Any:
    """Collapse CRM-shaped values ([{"email_address": ...}], ["a.com"]) to plain text."""
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        for key in ("full_name", "email_address", "phone_number", "domain", "value", "name"):
            if value.get(key):
                return str(value[key])
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


_AMOUNT_RE = re.compile(r"^\$?\s*([\d.,]+)\s*([kKmM])?")


def parse_amount(value: Any) -> Optional[float]:
    """Accept 50000, "50,000", "$50k", "1.5M" or {"amount": 50000}."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        return parse_amount(value.get("amount") or value.get("value"))
    if isinstance(value, (int, float)):
        return float(value)
    match = _AMOUNT_RE.match(str(value).strip())
    if not match:
        return None
    try:
        amount = float(match.group(1).replace(",", ""))
    except ValueError:
        return None
    multiplier = {"k": 1_000, "m": 1_000_000}.get((match.group(2) or "").lower(), 1)
    return amount * multiplier


class IntentFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def known_keys(cls) -> set[str]:
        keys = set()
        for name, field in cls.model_fields.items():
            keys.add(name)
            if isinstance(field.validation_alias, AliasChoices):
                keys.update(c for c in field.validation_alias.choices if isinstance(c, str))
        return keys

    @model_validator(mode="before")
    @classmethod
    def split_overflow(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = cls.known_keys()
        typed = {k: v for k, v in data.items() if k in known and k != "extra" and v not in (None, "")}
        overflow = {k: v for k, v in data.items() if k not in known and v not in (None, "")}
        typed["extra"] = {**(data.get("extra") or {}), **overflow}
        return typed

    @field_validator("*", mode="before")
    @classmethod
    def plain_text(cls, value: Any, info: ValidationInfo) -> Any:
        if info.field_name in ("extra", "value"):
            return value
        return _first_text(value)


class PersonFields(IntentFields):
    name: Optional[str] = Field(default=None, validation_alias=_alias("name", "full_name", "person"))
    email: Optional[str] = Field(
        default=None, validation_alias=_alias("email", "email_addresses", "email_address")
    )
    phone: Optional[str] = Field(default=None, validation_alias=_alias("phone", "phone_numbers", "phone_number"))
    company: Optional[str] = Field(
        default=None, validation_alias=_alias("company", "associated_company", "company_name")
    )
    company_record_id: Optional[str] = None
    job_title: Optional[str] = Field(default=None, validation_alias=_alias("job_title", "title", "role"))
    description: Optional[str] = None


class CompanyFields(IntentFields):
    name: Optional[str] = Field(default=None, validation_alias=_alias("name", "company_name", "company"))
    domain: Optional[str] = Field(default=None, validation_alias=_alias("domain", "domains", "website"))
    location: Optional[str] = Field(default=None, validation_alias=_alias("location", "primary_location"))
    description: Optional[str] = None


class DealFields(IntentFields):
    name: Optional[str] = Field(default=None, validation_alias=_alias("name", "deal_name", "title"))
    value: Optional[float] = Field(default=None, validation_alias=_alias("value", "amount", "deal_value"))
    currency: str = "USD"
    company: Optional[str] = Field(
        default=None, validation_alias=_alias("company", "associated_company", "company_name")
    )
    company_record_id: Optional[str] = None
    owner: Optional[str] = Field(default=None, validation_alias=_alias("owner", "owner_email", "ownerEmail"))

    @field_validator("value", mode="before")
    @classmethod
    def amount(cls, value: Any) -> Optional[float]:
        return parse_amount(value)


class TaskFields(IntentFields):
    content: Optional[str] = Field(
        default=None, validation_alias=_alias("content", "title", "task", "description")
    )
    deadline: Optional[str] = Field(
        default=None, validation_alias=_alias("deadline", "deadline_at", "due_date", "due date", "due", "date")
    )
    assignee: Optional[str] = Field(default=None, validation_alias=_alias("assignee", "assignee_name"))
    assignee_id: Optional[str] = None
    assignee_email: Optional[str] = None
    company: Optional[str] = Field(
        default=None, validation_alias=_alias("company", "associated_company", "company_name")
    )
    company_record_id: Optional[str] = None
    linked_record_id: Optional[str] = None
    linked_record_object: Optional[str] = None


class NoteFields(IntentFields):
    parent_object: Optional[str] = None
    parent_record_id: Optional[str] = None
    company: Optional[str] = Field(default=None, validation_alias=_alias("company", "associated_company"))
    company_record_id: Optional[str] = None
    person: Optional[str] = None
    content: Optional[str] = None


class ListFields(IntentFields):
    list_name: Optional[str] = Field(default=None, validation_alias=_alias("list_name", "list", "target_list"))
    list_id: Optional[str] = Field(default=None, validation_alias=_alias("list_id", "list_slug"))
    record_id: Optional[str] = None
    record_object: Optional[str] = Field(default=None, validation_alias=_alias("record_object", "parent_object"))
    company: Optional[str] = Field(default=None, validation_alias=_alias("company", "associated_company"))
    person: Optional[str] = None


INTENT_FIELDS: dict[Intent, type[IntentFields]] = {
    Intent.CREATE_PERSON: PersonFields,
    Intent.CREATE_COMPANY: CompanyFields,
    Intent.CREATE_DEAL: DealFields,
    Intent.CREATE_TASK: TaskFields,
    Intent.ADD_NOTE: NoteFields,
    Intent.ADD_TO_LIST: ListFields,
}


def fields_for(intent: Intent, data: dict[str, Any]) -> IntentFields:
    model = INTENT_FIELDS.get(Intent(intent), IntentFields)
    return model.model_validate(data or {})
