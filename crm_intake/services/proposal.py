"""Analysis, proposal display and execution shared by commands, text and buttons."""

from typing import Optional, Sequence

from crm_intake.schemas.action import ActionResult, Intent, SuggestedAction
from crm_intake.schemas.fields import TaskFields
from crm_intake.schemas.session import (
    AwaitingConfirmationState,
    AwaitingNoteParentTypeState,
    CallerInfo,
    CrmSchema,
    ExecutingState,
    ForwardedMessage,
)
from crm_intake.services.assignee import resolve_assignee
from crm_intake.services.classifier.base import ClassifierError
from crm_intake.services.company_resolution import resolve_company_reference
from crm_intake.services.crm.base import CrmApiError
from crm_intake.services.executor import NOTE_PARENT_OBJECTS
from crm_intake.services.formatters import (
    format_action_result,
    format_messages_for_single_note,
    format_suggested_action,
)
from crm_intake.services.keyboards import confirmation_keyboard, note_parent_type_keyboard
from crm_intake.services.result import CLASSIFIER_ERROR, CRM_ERROR, Result
from crm_intake.services.target_resolution import enforce_add_to_pattern
from crm_intake.services.turn import TurnContext

NOTE_PARENT_PROMPT = "📝 Add note to which type of record?"


def load_schema(turn: TurnContext) -> Optional[CrmSchema]:
    """Session copy first, then the process cache, then the CRM."""
    if turn.session.schema_cache is not None:
        return turn.session.schema_cache
    services = turn.services
    try:
        return services.schema_cache.get_or_fetch(services.registry.fetch_schema)
    except CrmApiError as e:
        turn.log.warning(f"Schema fetch failed, analyzing without it: {e}")
        return None


def apply_task_assignee(
    action: SuggestedAction, caller: Optional[CallerInfo], schema: Optional[CrmSchema]
) -> SuggestedAction:
    """Tasks default to the caller when no assignee was named."""
    if action.intent != Intent.CREATE_TASK or schema is None:
        return action
    fields = TaskFields.model_validate(action.extracted_data)
    if fields.assignee_id:
        return action
    resolved = resolve_assignee(fields.assignee, caller, schema.workspace_members, default_to_caller=True)
    if resolved is None:
        return action
    return action.with_data(assignee=resolved.member_name, assignee_id=resolved.member_id, assignee_email=resolved.email)


def show_proposal(turn: TurnContext, action: SuggestedAction, prefix: str = "", **changes) -> Result[SuggestedAction]:
    """Render the action with the confirmation keyboard and wait for a decision."""
    text = format_suggested_action(action)
    if prefix:
        text = f"{prefix}\n\n{text}"
    message_id = turn.show(text, confirmation_keyboard(action))
    turn.move_to(
        AwaitingConfirmationState(action=action),
        last_bot_message_id=message_id or turn.session.last_bot_message_id,
        **changes,
    )
    return Result.success(action)


def analyze_and_propose(
    turn: TurnContext,
    messages: Sequence[ForwardedMessage],
    instruction: str,
    caller: Optional[CallerInfo] = None,
) -> Result[SuggestedAction]:
    services = turn.services
    caller = caller or turn.event.caller
    schema = load_schema(turn)

    try:
        action = services.classifier.analyze(list(messages), instruction, schema)
    except ClassifierError as e:
        turn.log.error(f"Analysis failed: {e}")
        turn.reply("❌ Error: could not analyze that. Please try again.")
        return Result.from_exception(e, CLASSIFIER_ERROR)

    action = enforce_add_to_pattern(action, instruction)
    action = apply_task_assignee(action, caller, schema)
    action = resolve_company_reference(action, services.registry)

    turn.log.info(
        f"Proposed {action.intent.value}",
        context={"messages": len(messages), "clarifications": len(action.clarifications_needed)},
    )
    return show_proposal(
        turn,
        action,
        message_queue=list(messages),
        current_instruction=instruction,
        caller_info=caller,
        initiating_user_id=turn.event.user_id,
        schema_cache=schema,
    )


def needs_note_parent(action: SuggestedAction) -> bool:
    data = action.extracted_data
    return action.intent == Intent.ADD_NOTE and not (
        data.get("parent_record_id") and data.get("parent_object") in NOTE_PARENT_OBJECTS
    )


def caller_email(turn: TurnContext) -> Optional[str]:
    schema = turn.session.schema_cache
    if schema is None:
        return None
    resolved = resolve_assignee("", turn.session.caller_info, schema.workspace_members, default_to_caller=True)
    return resolved.email if resolved and resolved.email else None


def execute_current(turn: TurnContext) -> Result[ActionResult]:
    """Confirm: run the composite action and report back. Failure returns to confirmation."""
    action = turn.session.current_action
    if action is None:
        return turn.expired()

    if needs_note_parent(action):
        message_id = turn.show(NOTE_PARENT_PROMPT, note_parent_type_keyboard())
        turn.move_to(AwaitingNoteParentTypeState(), last_bot_message_id=message_id or turn.session.last_bot_message_id)
        return Result.success(None)

    turn.show("⏳ Creating...")
    turn.move_to(ExecutingState())

    _, note_content = format_messages_for_single_note(turn.session.message_queue, turn.services.now())
    try:
        result = turn.services.executor.execute(
            action,
            note_content if turn.session.message_queue else "",
            instruction=turn.session.current_instruction,
            caller_email=caller_email(turn),
        )
    except Exception as e:
        turn.log.exception(f"Execution crashed: {e}")
        result = ActionResult.failure(str(e), CRM_ERROR)

    if result.success:
        turn.show(format_action_result(result))
        turn.reset("completed")
        return Result.success(result)

    turn.log.warning(f"Execution failed: {result.error}", context={"error_code": result.error_code})
    show_proposal(turn, action, prefix=format_action_result(result))
    return Result.failure(result.error or "Execution failed", result.error_code or CRM_ERROR)
