from datetime import datetime, timezone
from typing import Annotated, Any, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from crm_intake.schemas.action import Clarification, SearchResult, SuggestedAction

NoteParentType = Literal["companies", "people", "deals"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionKey(NamedTuple):
    chat_id: int
    user_id: int


class CallerInfo(BaseModel):
    """Telegram user who issued the instruction; used for "me" and default assignee."""

    user_id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username or ""


class ForwardedMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = ""
    sender_username: Optional[str] = None
    sender_first_name: Optional[str] = None
    sender_last_name: Optional[str] = None
    chat_name: str = "Unknown"
    date: int = 0  # unix seconds of the original message
    message_id: Optional[int] = None
    has_media: bool = False
    media_type: Optional[str] = None

    @property
    def sender(self) -> str:
        if self.sender_username:
            return f"@{self.sender_username}"
        full = " ".join(part for part in (self.sender_first_name, self.sender_last_name) if part)
        return full or "Unknown"


class PendingInstruction(BaseModel):
    text: str
    message_id: int
    caller_info: CallerInfo = Field(default_factory=CallerInfo)
    created_at: datetime


class WorkspaceMember(BaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CrmList(BaseModel):
    id: str
    api_slug: str
    name: str
    parent_object: Optional[str] = None


class CrmSchema(BaseModel):
    objects: list[str] = Field(default_factory=list)
    lists: list[CrmList] = Field(default_factory=list)
    workspace_members: list[WorkspaceMember] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None


# --- Conversation states (tagged by "type") ---


class IdleState(BaseModel):
    type: Literal["idle"] = "idle"


class GatheringMessagesState(BaseModel):
    type: Literal["gathering_messages"] = "gathering_messages"


class AwaitingConfirmationState(BaseModel):
    type: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    action: SuggestedAction


class AwaitingClarificationState(BaseModel):
    type: Literal["awaiting_clarification"] = "awaiting_clarification"
    index: int = 0
    questions: list[Clarification]


class AwaitingEditState(BaseModel):
    type: Literal["awaiting_edit"] = "awaiting_edit"
    field: str
    original_value: Any = None


class AwaitingAssigneeState(BaseModel):
    type: Literal["awaiting_assignee"] = "awaiting_assignee"
    page: int = 0
    members: list[WorkspaceMember] = Field(default_factory=list)


class AwaitingAssigneeInputState(BaseModel):
    type: Literal["awaiting_assignee_input"] = "awaiting_assignee_input"


class AwaitingNoteParentTypeState(BaseModel):
    type: Literal["awaiting_note_parent_type"] = "awaiting_note_parent_type"


class AwaitingNoteParentSearchState(BaseModel):
    type: Literal["awaiting_note_parent_search"] = "awaiting_note_parent_search"
    parent_type: NoteParentType


class AwaitingNoteParentSelectionState(BaseModel):
    type: Literal["awaiting_note_parent_selection"] = "awaiting_note_parent_selection"
    results: list[SearchResult]
    parent_type: NoteParentType = "companies"


class ExecutingState(BaseModel):
    type: Literal["executing"] = "executing"


ConversationStateData = Annotated[
    Union[
        IdleState,
        GatheringMessagesState,
        AwaitingConfirmationState,
        AwaitingClarificationState,
        AwaitingEditState,
        AwaitingAssigneeState,
        AwaitingAssigneeInputState,
        AwaitingNoteParentTypeState,
        AwaitingNoteParentSearchState,
        AwaitingNoteParentSelectionState,
        ExecutingState,
    ],
    Field(discriminator="type"),
]


class SessionState(BaseModel):
    """Everything persisted for one (chat, user) pair between webhook calls."""

    chat_id: int
    user_id: int
    state: ConversationStateData = Field(default_factory=IdleState)
    message_queue: list[ForwardedMessage] = Field(default_factory=list)
    current_action: Optional[SuggestedAction] = None
    current_instruction: Optional[str] = None
    caller_info: Optional[CallerInfo] = None
    initiating_user_id: Optional[int] = None
    schema_cache: Optional[CrmSchema] = None
    last_bot_message_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.chat_id, self.user_id)

    @property
    def state_type(self) -> str:
        return self.state.type

    def is_owned_by(self, user_id: int) -> bool:
        return self.initiating_user_id is None or self.initiating_user_id == user_id


def new_session(key: SessionKey) -> SessionState:
    return SessionState(chat_id=key.chat_id, user_id=key.user_id)
