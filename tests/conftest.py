import itertools
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import pytest

from crm_intake.schemas.action import Clarification, Intent, SearchResult, SuggestedAction
from crm_intake.schemas.events import CallbackEvent, CommandEvent, ForwardedMessageEvent, TextEvent
from crm_intake.schemas.session import CallerInfo, CrmSchema, ForwardedMessage, WorkspaceMember
from crm_intake.services.clarification import ClarificationLoop
from crm_intake.services.classifier.base import IntentClassifier
from crm_intake.services.conversation_engine import ConversationEngine
from crm_intake.services.correlator import Correlator
from crm_intake.services.crm.base import CrmApiError, CrmRegistry, RecordRef
from crm_intake.services.executor import CompositeExecutor
from crm_intake.services.pending_store import InMemoryPendingStore
from crm_intake.services.schema_cache import SchemaCache
from crm_intake.services.session_store import InMemorySessionStore
from crm_intake.services.telegram_service import ChatClient
from crm_intake.services.turn import EngineServices

FIXED_NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_714_996_800.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


class FakeRegistry(CrmRegistry):
    def __init__(self):
        self.records: dict[str, list[SearchResult]] = {"companies": [], "people": [], "deals": [], "lists": []}
        self.created: list[tuple[str, dict]] = []
        self.notes: list[dict] = []
        self.list_entries: list[dict] = []
        self.searches: list[tuple[str, str]] = []
        self.fail_create: dict[str, str] = {}
        self.fail_search = False
        self.fail_notes = False
        self.schema = CrmSchema(
            objects=["people", "companies", "deals"],
            workspace_members=[
                WorkspaceMember(id="m-1", first_name="Alice", last_name="Smith", email="alice@team.io"),
                WorkspaceMember(id="m-2", first_name="Bob", last_name="Jones", email="bob@team.io"),
            ],
        )
        self.schema_fetches = 0
        self._ids = itertools.count(1)

    def add(self, object_type: str, name: str, extra: Optional[str] = None) -> SearchResult:
        record = SearchResult(id=f"{object_type}-{next(self._ids)}", name=name, extra=extra)
        self.records.setdefault(object_type, []).append(record)
        return record

    def search_records(self, object_type: str, query: str, limit: int = 10) -> list[SearchResult]:
        self.searches.append((object_type, query))
        if self.fail_search:
            raise CrmApiError("search unavailable", 503)
        q = query.lower().strip()
        hits = [r for r in self.records.get(object_type, []) if q in r.name.lower() or r.name.lower() in q]
        return hits[:limit]

    def create_record(self, object_type: str, fields: dict[str, Any]) -> RecordRef:
        if object_type in self.fail_create:
            raise CrmApiError(self.fail_create[object_type], 400)
        self.created.append((object_type, dict(fields)))
        name = fields.get("name") or fields.get("content") or "record"
        record = self.add(object_type, name)
        return RecordRef(id=record.id, url=self.record_url(object_type, record.id))

    def create_note(self, parent_object: str, parent_record_id: str, title: str, content: str) -> RecordRef:
        if self.fail_notes:
            raise CrmApiError("notes unavailable", 500)
        note = {"parent_object": parent_object, "parent_record_id": parent_record_id, "title": title, "content": content}
        self.notes.append(note)
        return RecordRef(id=f"note-{len(self.notes)}")

    def add_to_list(self, list_id: str, record_id: str, parent_object: Optional[str] = None) -> RecordRef:
        self.list_entries.append({"list_id": list_id, "record_id": record_id, "parent_object": parent_object})
        return RecordRef(id=f"entry-{len(self.list_entries)}")

    def fetch_schema(self) -> CrmSchema:
        self.schema_fetches += 1
        return self.schema

    def record_url(self, object_type: str, record_id: str) -> Optional[str]:
        return f"https://crm.test/{object_type}/{record_id}"

    def created_of(self, object_type: str) -> list[dict]:
        return [fields for kind, fields in self.created if kind == object_type]


def answer_into_field(action: SuggestedAction, field: str, answer: str, schema) -> SuggestedAction:
    """Default clarification behaviour: the answer becomes the field's value."""
    return action.with_data(**{field: answer}).without_clarification(field)


class ScriptedClassifier(IntentClassifier):
    def __init__(self):
        self.analyses: list[SuggestedAction] = []
        self.analyze_calls: list[dict] = []
        self.clarification_calls: list[tuple[str, str]] = []
        self.on_clarification: Callable = answer_into_field

    def will_return(self, outcome: Union[SuggestedAction, Exception]) -> None:
        """Queue an action, or an exception to raise, for the next analyze call."""
        self.analyses.append(outcome)

    def analyze(self, messages, instruction, schema) -> SuggestedAction:
        self.analyze_calls.append({"messages": list(messages), "instruction": instruction, "schema": schema})
        outcome = self.analyses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def process_clarification(self, action, field, answer, schema) -> SuggestedAction:
        self.clarification_calls.append((field, answer))
        return self.on_clarification(action, field, answer, schema)


class RecordingChat(ChatClient):
    def __init__(self):
        self.sent: list[dict] = []
        self.edits: list[dict] = []
        self.answers: list[dict] = []
        self.reactions: list[tuple[int, int, str]] = []
        self._ids = itertools.count(500)

    def send_message(self, chat_id, text, reply_markup=None):
        message_id = next(self._ids)
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup, "message_id": message_id})
        return message_id

    def edit_message(self, chat_id, message_id, text, reply_markup=None):
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, "reply_markup": reply_markup})
        return True

    def answer_callback(self, callback_id, text=None, show_alert=False):
        self.answers.append({"callback_id": callback_id, "text": text, "show_alert": show_alert})
        return True

    def set_reaction(self, chat_id, message_id, emoji):
        self.reactions.append((chat_id, message_id, emoji))
        return True

    @property
    def texts(self) -> list[str]:
        return [m["text"] for m in self.sent] + [e["text"] for e in self.edits]

    @property
    def last_text(self) -> str:
        return self.sent[-1]["text"]


class EventFactory:
    def __init__(self, chat_id: int = 100, user_id: int = 7):
        self.chat_id = chat_id
        self.user_id = user_id
        self._ids = itertools.count(1)

    def caller(self, user_id: Optional[int] = None) -> CallerInfo:
        uid = user_id or self.user_id
        return CallerInfo(user_id=uid, first_name="Alice", last_name="Smith", username=f"user{uid}")

    def _base(self, user_id: Optional[int]) -> dict:
        uid = user_id or self.user_id
        return {
            "chat_id": self.chat_id,
            "user_id": uid,
            "message_id": next(self._ids),
            "caller": self.caller(uid),
        }

    def forward(self, text: str, sender: str = "Jane Doe", user_id: Optional[int] = None) -> ForwardedMessageEvent:
        first, _, last = sender.partition(" ")
        message = ForwardedMessage(
            text=text,
            sender_first_name=first,
            sender_last_name=last or None,
            chat_name=sender,
            date=1_714_996_800,
        )
        return ForwardedMessageEvent(message=message, **self._base(user_id))

    def command(self, command: str, args: str = "", user_id: Optional[int] = None) -> CommandEvent:
        return CommandEvent(command=command, args=args, **self._base(user_id))

    def text(self, text: str, user_id: Optional[int] = None) -> TextEvent:
        return TextEvent(text=text, **self._base(user_id))

    def press(self, data: str, message_id: int, user_id: Optional[int] = None) -> CallbackEvent:
        base = self._base(user_id)
        base["message_id"] = message_id
        return CallbackEvent(callback_id=f"cb-{next(self._ids)}", data=data, **base)


def person_action(**data: Any) -> SuggestedAction:
    return SuggestedAction(
        intent=Intent.CREATE_PERSON,
        confidence=0.9,
        target_object="people",
        extracted_data={"name": "Jane Doe", **data},
        note_title="Intro call with Jane",
    )


def with_questions(action: SuggestedAction, *fields: str) -> SuggestedAction:
    questions = [Clarification(field=f, question=f"What is the {f}?") for f in fields]
    return action.model_copy(update={"clarifications_needed": questions})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def classifier():
    return ScriptedClassifier()


@pytest.fixture
def chat():
    return RecordingChat()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def pending(clock):
    return InMemoryPendingStore(ttl_ms=2000, clock=clock)


@pytest.fixture
def services(store, pending, chat, classifier, registry, clock):
    return EngineServices(
        store=store,
        chat=chat,
        classifier=classifier,
        registry=registry,
        correlator=Correlator(pending),
        schema_cache=SchemaCache(ttl_seconds=300, clock=clock),
        executor=CompositeExecutor(registry, now=lambda: FIXED_NOW),
        clarifier=ClarificationLoop(classifier, registry),
        assignee_page_size=6,
        now=lambda: FIXED_NOW,
    )


@pytest.fixture
def engine(services):
    return ConversationEngine(services)


@pytest.fixture
def events():
    return EventFactory()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
