"""Per-event working context shared by the command, text and button handlers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from crm_intake.config import settings
from crm_intake.logging_config import session_logger
from crm_intake.schemas.events import BaseEvent, CallbackEvent
from crm_intake.schemas.session import AwaitingConfirmationState, ConversationStateData, SessionState, utc_now
from crm_intake.services.clarification import ClarificationLoop
from crm_intake.services.classifier.base import IntentClassifier
from crm_intake.services.correlator import Correlator
from crm_intake.services.crm.base import CrmRegistry
from crm_intake.services.executor import CompositeExecutor
from crm_intake.services.result import EXPIRED_SESSION, Result
from crm_intake.services.schema_cache import SchemaCache
from crm_intake.services.session_store import SessionStore
from crm_intake.services.state_machine import ConversationState, transition
from crm_intake.services.telegram_service import ChatClient

EXPIRED_TEXT = "❌ Session expired. Please start over with /done or /new"


@dataclass
class EngineServices:
    """Collaborators of the conversation engine, wired once per process."""

    store: SessionStore
    chat: ChatClient
    classifier: IntentClassifier
    registry: CrmRegistry
    correlator: Correlator
    schema_cache: SchemaCache
    executor: CompositeExecutor
    clarifier: ClarificationLoop
    assignee_page_size: int = settings.assignee_page_size
    now: Callable[[], datetime] = utc_now


class TurnContext:
    """One inbound event being handled against one session.

    All session writes go through save/move_to so every change is a full
    read-modify-write of the stored SessionState.
    """

    def __init__(self, services: EngineServices, event: BaseEvent, session: SessionState):
        self.services = services
        self.event = event
        self.session = session
        self.log = session_logger("engine", session.chat_id, session.user_id)

    @property
    def key(self):
        return self.session.key

    @property
    def state(self) -> ConversationState:
        return ConversationState(self.session.state_type)

    @property
    def is_callback(self) -> bool:
        return isinstance(self.event, CallbackEvent)

    # --- session writes ---

    def save(self, **changes) -> SessionState:
        self.session = self.services.store.set(self.key, self.session.model_copy(update=changes))
        return self.session

    def move_to(self, new_state: ConversationStateData, **changes) -> SessionState:
        """Validated transition. Raises InvalidTransitionError."""
        old = self.state
        new = transition(old, ConversationState(new_state.type))
        if isinstance(new_state, AwaitingConfirmationState):
            changes.setdefault("current_action", new_state.action)
        self.save(state=new_state, **changes)
        self.log.info(f"State {old.value} -> {new.value}", context={"event": getattr(self.event, "kind", None)})
        return self.session

    def reset(self, reason: str) -> SessionState:
        old = self.state
        self.session = self.services.store.reset(self.key)
        self.log.info(f"State {old.value} -> idle ({reason})")
        return self.session

    # --- chat output ---

    def reply(self, text: str, reply_markup: Optional[dict] = None) -> Optional[int]:
        return self.services.chat.send_message(self.event.chat_id, text, reply_markup)

    def show(self, text: str, reply_markup: Optional[dict] = None) -> Optional[int]:
        """Edit the message that carried the pressed button, else send a new one.

        Returns the id of the message now showing the text.
        """
        if self.is_callback and self.event.message_id:
            if self.services.chat.edit_message(self.event.chat_id, self.event.message_id, text, reply_markup):
                return self.event.message_id
        return self.reply(text, reply_markup)

    def answer(self, text: Optional[str] = None, show_alert: bool = False) -> None:
        if self.is_callback:
            self.services.chat.answer_callback(self.event.callback_id, text, show_alert)

    def expired(self) -> Result:
        self.log.warning(f"Expired session in state {self.state.value}")
        if self.is_callback:
            self.answer("Session expired. Please start over.", show_alert=True)
        else:
            self.reply(EXPIRED_TEXT)
        return Result.failure("Session expired", EXPIRED_SESSION)
