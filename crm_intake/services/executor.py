"""Composite execution of a confirmed SuggestedAction.

Prerequisites run first, in order, and any failure stops everything before the
main action is attempted. The main action is dispatched by intent. When it
succeeds and has a parent record, the forwarded conversation is attached to
that record as a note.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import (
    PREREQUISITE_INTENTS,
    ActionResult,
    CreatedRecord,
    Intent,
    PrerequisiteAction,
    SuggestedAction,
)
from crm_intake.schemas.fields import (
    CompanyFields,
    DealFields,
    ListFields,
    NoteFields,
    PersonFields,
    TaskFields,
)
from crm_intake.services.crm.base import CrmApiError, CrmRegistry, RecordRef
from crm_intake.services.deadline import parse_deadline
from crm_intake.services.matching import match_confidence, parse_company_input
from crm_intake.services.result import CRM_ERROR, INVALID_STATE, PREREQUISITE_FAILED

logger = get_logger("executor")

NOTE_PARENT_OBJECTS = {"companies", "people", "deals"}

# Only a high-confidence match is reused; anything weaker gets a new record
REUSE_CONFIDENCE = {"high"}


@dataclass
class ExecutionContext:
    """Records created or reused so far, shared by prerequisites and the main action."""

    record_ids: dict[str, str] = field(default_factory=dict)  # "company"/"person" -> id
    created: list[CreatedRecord] = field(default_factory=list)


@dataclass
class MainOutcome:
    result: ActionResult
    parent_object: Optional[str] = None
    parent_record_id: Optional[str] = None


class PrerequisiteError(Exception):
    pass


class CompositeExecutor:
    def __init__(self, registry: CrmRegistry, now: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.now = now
        self._handlers = {
            Intent.CREATE_PERSON: self._create_person,
            Intent.CREATE_COMPANY: self._create_company,
            Intent.CREATE_DEAL: self._create_deal,
            Intent.CREATE_TASK: self._create_task,
            Intent.ADD_NOTE: self._add_note,
            Intent.ADD_TO_LIST: self._add_to_list,
        }

    def execute(
        self,
        action: SuggestedAction,
        note_content: str,
        instruction: Optional[str] = None,
        caller_email: Optional[str] = None,
    ) -> ActionResult:
        ctx = ExecutionContext()

        try:
            self.run_prerequisites(action.prerequisite_actions, ctx)
        except (PrerequisiteError, CrmApiError) as e:
            logger.warning(f"Prerequisite failed, main action skipped: {e}")
            result = ActionResult.failure(f"Failed to create prerequisite: {e}", PREREQUISITE_FAILED)
            result.created_prerequisites = ctx.created
            return result

        handler = self._handlers.get(action.intent)
        if handler is None:
            return ActionResult.failure(f"Unsupported intent: {action.intent.value}", INVALID_STATE)

        try:
            outcome = handler(action, ctx, instruction=instruction, caller_email=caller_email)
        except CrmApiError as e:
            logger.error(f"{action.intent.value} failed: {e}")
            result = ActionResult.failure(str(e), CRM_ERROR)
            result.created_prerequisites = ctx.created
            return result

        result = outcome.result
        if result.success and outcome.parent_record_id:
            content = note_content or str(action.extracted_data.get("content") or "")
            if content:
                result.note_id = self._attach_note(action, outcome, content)

        result.created_prerequisites = ctx.created
        logger.info(
            f"Executed {action.intent.value}: success={result.success}",
            extra={"context": {"record_id": result.record_id, "prerequisites": len(ctx.created)}},
        )
        return result

    # --- prerequisites ---

    def run_prerequisites(self, prerequisites: list[PrerequisiteAction], ctx: ExecutionContext) -> None:
        unsupported = [p.intent.value for p in prerequisites if p.intent not in PREREQUISITE_INTENTS]
        if unsupported:
            raise PrerequisiteError(f"unsupported prerequisite {', '.join(unsupported)}")

        for prerequisite in prerequisites:
            if prerequisite.intent == Intent.CREATE_COMPANY:
                fields = CompanyFields.model_validate(prerequisite.extracted_data)
                if not fields.name:
                    continue
                ctx.record_ids["company"] = self._find_or_create_company(fields.name, fields.domain, ctx, fields)
            elif prerequisite.intent == Intent.CREATE_PERSON:
                fields = PersonFields.model_validate(prerequisite.extracted_data)
                if not fields.name:
                    raise PrerequisiteError("person prerequisite has no name")
                existing = self._find_existing("people", fields.name)
                if existing:
                    ctx.record_ids["person"] = existing.id
                    continue
                ref = self.registry.create_record(
                    "people", {"name": fields.name, "email": fields.email, "company_id": ctx.record_ids.get("company")}
                )
                ctx.record_ids["person"] = ref.id
                ctx.created.append(CreatedRecord(name=f"👤 {fields.name}", url=ref.url))

    def _find_existing(self, object_type: str, name: str, domain: Optional[str] = None):
        results = self.registry.search_records(object_type, name)
        match = match_confidence(name, results, name, domain)
        if match.confidence in REUSE_CONFIDENCE:
            logger.info(f"Reusing {object_type} '{results[0].name}' for '{name}' ({match.reason})")
            return results[0]
        return None

    def _find_or_create_company(
        self,
        name: str,
        domain: Optional[str],
        ctx: ExecutionContext,
        fields: Optional[CompanyFields] = None,
    ) -> str:
        existing = self._find_existing("companies", name, domain)
        if existing:
            return existing.id
        values = {"name": name, "domain": domain}
        if fields is not None:
            values.update(location=fields.location, description=fields.description)
        ref = self.registry.create_record("companies", values)
        ctx.created.append(CreatedRecord(name=f"🏢 {name}", url=ref.url))
        return ref.id

    def _link_company(self, company: Optional[str], record_id: Optional[str], ctx: ExecutionContext) -> Optional[str]:
        """Company id for a person/deal/task: resolved id, prerequisite, then search-then-create."""
        if record_id:
            return record_id
        if ctx.record_ids.get("company"):
            return ctx.record_ids["company"]
        if not company:
            return None
        parsed = parse_company_input(company)
        try:
            company_id = self._find_or_create_company(parsed.name, parsed.domain, ctx)
        except CrmApiError as e:
            logger.warning(f"Could not link company '{company}': {e}")
            return None
        ctx.record_ids["company"] = company_id
        return company_id

    # --- main actions ---

    def _create_person(self, action: SuggestedAction, ctx: ExecutionContext, **_) -> MainOutcome:
        fields = PersonFields.model_validate(action.extracted_data)
        if not fields.name:
            return MainOutcome(ActionResult.failure("Person name is required", INVALID_STATE))
        company_id = self._link_company(fields.company, fields.company_record_id, ctx)
        ref = self.registry.create_record(
            "people",
            {
                "name": fields.name,
                "email": fields.email,
                "phone": fields.phone,
                "company_id": company_id,
                "job_title": fields.job_title,
                "description": fields.description,
            },
        )
        return self._created(ref, "people")

    def _create_company(self, action: SuggestedAction, ctx: ExecutionContext, **_) -> MainOutcome:
        fields = CompanyFields.model_validate(action.extracted_data)
        if not fields.name:
            return MainOutcome(ActionResult.failure("Company name is required", INVALID_STATE))
        ref = self.registry.create_record(
            "companies",
            {
                "name": fields.name,
                "domain": fields.domain,
                "location": fields.location,
                "description": fields.description,
            },
        )
        return self._created(ref, "companies")

    def _create_deal(
        self, action: SuggestedAction, ctx: ExecutionContext, caller_email: Optional[str] = None, **_
    ) -> MainOutcome:
        fields = DealFields.model_validate(action.extracted_data)
        if not fields.name:
            return MainOutcome(ActionResult.failure("Deal name is required", INVALID_STATE))
        company_id = self._link_company(fields.company, fields.company_record_id, ctx)
        ref = self.registry.create_record(
            "deals",
            {
                "name": fields.name,
                "value": fields.value,
                "currency": fields.currency,
                "company_id": company_id,
                "owner": fields.owner or caller_email,
            },
        )
        return self._created(ref, "deals")

    def _create_task(
        self, action: SuggestedAction, ctx: ExecutionContext, instruction: Optional[str] = None, **_
    ) -> MainOutcome:
        fields = TaskFields.model_validate(action.extracted_data)
        linked_id, linked_object = fields.linked_record_id, fields.linked_record_object
        if not (linked_id and linked_object):
            linked_id = self._link_company(fields.company, fields.company_record_id, ctx)
            linked_object = "companies" if linked_id else None
        if not linked_id and ctx.record_ids.get("person"):
            linked_id, linked_object = ctx.record_ids["person"], "people"

        now = self.now() if self.now else None
        deadline = parse_deadline(instruction, now) if instruction else None
        if deadline is None:
            deadline = parse_deadline(fields.deadline, now)

        ref = self.registry.create_record(
            "tasks",
            {
                "content": fields.content or "",
                "deadline_at": deadline,
                "assignee_id": fields.assignee_id,
                "assignee_email": fields.assignee_email,
                "linked_record_id": linked_id,
                "linked_record_object": linked_object,
            },
        )
        url = None
        if linked_id and linked_object:
            record_url = self.registry.record_url(linked_object, linked_id)
            url = f"{record_url}/tasks" if record_url else None
        return MainOutcome(
            ActionResult(success=True, record_id=ref.id, record_url=url),
            parent_object=linked_object if linked_object in NOTE_PARENT_OBJECTS else None,
            parent_record_id=linked_id if linked_object in NOTE_PARENT_OBJECTS else None,
        )

    def _add_note(self, action: SuggestedAction, ctx: ExecutionContext, **_) -> MainOutcome:
        fields = NoteFields.model_validate(action.extracted_data)
        if not fields.parent_record_id or fields.parent_object not in NOTE_PARENT_OBJECTS:
            return MainOutcome(ActionResult.failure("Could not find target record for note", INVALID_STATE))
        return MainOutcome(
            ActionResult(
                success=True,
                record_id=fields.parent_record_id,
                record_url=self.registry.record_url(fields.parent_object, fields.parent_record_id),
            ),
            parent_object=fields.parent_object,
            parent_record_id=fields.parent_record_id,
        )

    def _add_to_list(self, action: SuggestedAction, ctx: ExecutionContext, **_) -> MainOutcome:
        fields = ListFields.model_validate(action.extracted_data)
        list_id = fields.list_id or action.target_list
        if not list_id or not fields.record_id:
            return MainOutcome(ActionResult.failure("Missing list or record ID", INVALID_STATE))
        ref = self.registry.add_to_list(list_id, fields.record_id, fields.record_object)
        parent = fields.record_object if fields.record_object in NOTE_PARENT_OBJECTS else None
        return MainOutcome(
            ActionResult(success=True, record_id=ref.id),
            parent_object=parent,
            parent_record_id=fields.record_id if parent else None,
        )

    # --- helpers ---

    def _created(self, ref: RecordRef, object_type: str) -> MainOutcome:
        return MainOutcome(
            ActionResult(success=True, record_id=ref.id, record_url=ref.url),
            parent_object=object_type,
            parent_record_id=ref.id,
        )

    def _attach_note(self, action: SuggestedAction, outcome: MainOutcome, content: str) -> Optional[str]:
        try:
            note = self.registry.create_note(
                outcome.parent_object, outcome.parent_record_id, action.note_title or "Telegram conversation", content
            )
        except CrmApiError as e:
            logger.warning(f"Note attachment failed for {outcome.parent_object}/{outcome.parent_record_id}: {e}")
            return None
        return note.id
