"""Conversation engine: routes every decoded inbound event through the session state machine."""

from html import escape
from typing import Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.events import CallbackEvent, CommandEvent, ForwardedMessageEvent, InboundEvent, TextEvent
from crm_intake.schemas.session import AwaitingNoteParentSelectionState, GatheringMessagesState, IdleState, SessionState
from crm_intake.services.assignee import resolve_assignee
from crm_intake.services.callback_service import answer_clarification, process_callback
from crm_intake.services.company_resolution import COMPANY_REFERENCE_KEYS, resolve_company_reference
from crm_intake.services.crm.base import CrmApiError
from crm_intake.services.formatters import format_queue_status
from crm_intake.services.keyboards import note_parent_results_keyboard
from crm_intake.services.proposal import analyze_and_propose, show_proposal
from crm_intake.services.result import CRM_ERROR, EXPIRED_SESSION, INVALID_STATE, Result
from crm_intake.services.state_machine import ConversationState, after_forward
from crm_intake.services.turn import EngineServices, TurnContext

logger = get_logger("conversation_engine")

S = ConversationState

HELP_TEXT = """🤖 CRM intake bot

✨ What I can do:
• Create people, companies and deals
• Add records to lists
• Create tasks with assignees and due dates
• Add notes to any record

📋 How to use:

🆕 Direct create (no forwarding):
/new create task for John to call Acme
/new deal $50k with Acme

📦 Batch capture:
1️⃣ Forward messages from any conversation
2️⃣ /done create a contact
3️⃣ Review and confirm

⚡ Quick capture: type the instruction, then forward the message right after it.

Commands:
• /new &lt;instruction&gt; - Create directly
• /done &lt;instruction&gt; - Process forwarded messages
• /clear - Clear message queue
• /cancel - Cancel current operation
• /help - Show this help"""

WELCOME_TEXT = "🤖 Welcome!\n\n" + HELP_TEXT.split("📋 How to use:", 1)[1].lstrip()

EMPTY_QUEUE_TEXT = (
    "📭 No messages in queue.\n\n"
    "Forward some messages first, then use:\n"
    "/done &lt;instruction&gt;\n\n"
    "Or create directly:\n"
    "/new &lt;instruction&gt;"
)

MISSING_INSTRUCTION_TEXT = (
    "💡 What should I do with these messages?\n\n"
    "Examples:\n"
    "• /done create a person\n"
    "• /done add company\n"
    "• /done create task for John"
)

UNEXPECTED_TEXT = "🤔 I'm not sure what to do with that.\n\nUse /help to see available commands, or /cancel to start over."

NOTE_PARENT_LABELS = {"companies": "company", "people": "person", "deals": "deal"}


class ConversationEngine:
    def __init__(self, services: EngineServices):
        self.services = services
        self._commands = {
            "start": self.cmd_start,
            "help": self.cmd_help,
            "done": self.cmd_done,
            "new": self.cmd_new,
            "clear": self.cmd_clear,
            "cancel": self.cmd_cancel,
        }
        self._text_handlers = {
            S.IDLE: self.text_instruction,
            S.GATHERING_MESSAGES: self.text_instruction,
            S.AWAITING_CLARIFICATION: self.text_clarification,
            S.AWAITING_EDIT: self.text_edit,
            S.AWAITING_ASSIGNEE_INPUT: self.text_assignee,
            S.AWAITING_NOTE_PARENT_SEARCH: self.text_note_parent_search,
        }

    @property
    def store(self):
        return self.services.store

    def handle(self, event: InboundEvent) -> Result:
        """Handle one event to completion while holding its session's lock."""
        if isinstance(event, CallbackEvent):
            return self.handle_callback(event)

        with self.store.lock(event.key):
            turn = TurnContext(self.services, event, self.store.get_or_create(event.key))
            if isinstance(event, ForwardedMessageEvent):
                return self.handle_forward(turn)
            if isinstance(event, CommandEvent):
                return self.handle_command(turn)
            return self.handle_text(turn)

    # --- callbacks ---

    def _callback_session(self, event: CallbackEvent) -> Optional[SessionState]:
        """The session whose keyboard was pressed, falling back to the presser's own."""
        if event.message_id is not None:
            session = self.store.find_by_bot_message(event.chat_id, event.message_id)
            if session is not None:
                return session
        return self.store.get(event.key)

    def handle_callback(self, event: CallbackEvent) -> Result:
        session = self._callback_session(event)
        if session is None:
            self.services.chat.answer_callback(event.callback_id, "Session expired. Please start over.", True)
            return Result.failure("No session for callback", EXPIRED_SESSION)

        with self.store.lock(session.key):
            # Re-read under the lock
            session = self.store.get(session.key) or session
            return process_callback(TurnContext(self.services, event, session))

    # --- forwards ---

    def handle_forward(self, turn: TurnContext) -> Result:
        event: ForwardedMessageEvent = turn.event
        queue = [*turn.session.message_queue, event.message]
        new_state = after_forward(turn.state)

        changes = {"message_queue": queue}
        if new_state != turn.state:
            turn.move_to(GatheringMessagesState(), **changes)
        else:
            turn.save(**changes)
        turn.log.info(f"Queued forwarded message ({len(queue)} in queue)")

        if event.message_id:
            self.services.chat.set_reaction(event.chat_id, event.message_id, "👀")

        pending = self.services.correlator.claim(turn.key)
        if pending is None:
            turn.reply(format_queue_status(len(queue)))
            return Result.success(None)

        turn.reply(format_queue_status(len(queue), pending.text))
        caller = pending.caller_info if pending.caller_info.user_id else event.caller
        return analyze_and_propose(turn, queue, pending.text, caller)

    # --- commands ---

    def handle_command(self, turn: TurnContext) -> Result:
        event: CommandEvent = turn.event
        handler = self._commands.get(event.command.lower())
        if handler is None:
            turn.reply(UNEXPECTED_TEXT)
            return Result.failure(f"Unknown command /{event.command}", INVALID_STATE)
        turn.log.info(f"Command /{event.command}", context={"state": turn.state.value})
        return handler(turn, event.args.strip())

    def cmd_start(self, turn: TurnContext, args: str) -> Result:
        turn.reset("start")
        turn.reply(WELCOME_TEXT)
        return Result.success(None)

    def cmd_help(self, turn: TurnContext, args: str) -> Result:
        turn.reply(HELP_TEXT)
        return Result.success(None)

    def cmd_done(self, turn: TurnContext, args: str) -> Result:
        queue = turn.session.message_queue
        if not queue:
            turn.reply(EMPTY_QUEUE_TEXT)
            return Result.failure("Empty queue", INVALID_STATE)
        if not args:
            turn.reply(MISSING_INSTRUCTION_TEXT)
            return Result.failure("Missing instruction", INVALID_STATE)
        return analyze_and_propose(turn, queue, args, turn.event.caller)

    def cmd_new(self, turn: TurnContext, args: str) -> Result:
        if not args:
            turn.reply("💡 Usage: /new &lt;instruction&gt;\n\nExample: /new add company TechCorp")
            return Result.failure("Missing instruction", INVALID_STATE)
        return analyze_and_propose(turn, [], args, turn.event.caller)

    def cmd_clear(self, turn: TurnContext, args: str) -> Result:
        count = len(turn.session.message_queue)
        turn.move_to(
            IdleState(),
            message_queue=[],
            current_action=None,
            current_instruction=None,
            initiating_user_id=None,
        )
        turn.reply(f"🗑️ Queue cleared ({count} message{'' if count == 1 else 's'} removed).")
        return Result.success(None)

    def cmd_cancel(self, turn: TurnContext, args: str) -> Result:
        turn.reset("cancel")
        turn.reply("❌ Cancelled. Queue cleared.")
        return Result.success(None)

    # --- free text ---

    def handle_text(self, turn: TurnContext) -> Result:
        handler = self._text_handlers.get(turn.state)
        if handler is None:
            turn.reply(UNEXPECTED_TEXT)
            return Result.failure(f"No text expected in {turn.state.value}", INVALID_STATE)
        return handler(turn, turn.event.text.strip())

    def text_instruction(self, turn: TurnContext, text: str) -> Result:
        event: TextEvent = turn.event
        self.services.correlator.remember_instruction(turn.key, text, event.message_id or 0, event.caller)
        queued = len(turn.session.message_queue)
        if queued:
            turn.reply(f"📦 You have {queued} message(s) in queue.\n\nUse /done {escape(text)} to process them.")
        return Result.success(None)

    def text_clarification(self, turn: TurnContext, text: str) -> Result:
        if turn.session.current_action is None:
            return turn.expired()
        return answer_clarification(turn, turn.session.state, text)

    def text_edit(self, turn: TurnContext, text: str) -> Result:
        action = turn.session.current_action
        if action is None:
            return turn.expired()
        field = turn.session.state.field

        updated = action.with_data(**{field: text})
        if field in COMPANY_REFERENCE_KEYS:
            # A new company name invalidates the previously resolved record
            data = {k: v for k, v in updated.extracted_data.items() if k != "company_record_id"}
            updated = updated.model_copy(update={"extracted_data": data})
            updated = resolve_company_reference(updated, self.services.registry)
        turn.log.info(f"Edited field '{field}'")
        return show_proposal(turn, updated)

    def text_assignee(self, turn: TurnContext, text: str) -> Result:
        action = turn.session.current_action
        schema = turn.session.schema_cache
        if action is None or schema is None:
            return turn.expired()

        resolved = resolve_assignee(text, turn.session.caller_info, schema.workspace_members, default_to_caller=False)
        if resolved is None:
            turn.reply(
                f'❌ Could not find "{escape(text)}" in workspace members.\n\n'
                "Please try again or use /cancel to start over."
            )
            return Result.failure("Assignee not found", INVALID_STATE)

        updated = action.with_data(
            assignee=resolved.member_name, assignee_id=resolved.member_id, assignee_email=resolved.email or None
        )
        return show_proposal(turn, updated, prefix=f"✅ Assignee set to {escape(resolved.member_name)}")

    def text_note_parent_search(self, turn: TurnContext, text: str) -> Result:
        parent_type = turn.session.state.parent_type
        try:
            results = self.services.registry.search_records(parent_type, text)
        except CrmApiError as e:
            turn.log.error(f"Note parent search failed: {e}")
            turn.reply("❌ Search failed. Try again or /cancel.")
            return Result.from_exception(e, CRM_ERROR)

        if not results:
            turn.reply(f'❌ No {NOTE_PARENT_LABELS[parent_type]} found matching "{escape(text)}".\n\nTry again or /cancel.')
            return Result.success(None)

        message_id = turn.reply(f"Found {len(results)} result(s):", note_parent_results_keyboard(results))
        turn.move_to(
            AwaitingNoteParentSelectionState(results=results, parent_type=parent_type),
            last_bot_message_id=message_id or turn.session.last_bot_message_id,
        )
        return Result.success(results)
