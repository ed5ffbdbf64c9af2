from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str = "private"  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None


class TelegramMessageOrigin(BaseModel):
    """forward_origin: user, hidden_user, chat or channel."""

    type: str
    date: int = 0
    sender_user: Optional[TelegramUser] = None
    sender_user_name: Optional[str] = None
    sender_chat: Optional[TelegramChat] = None
    chat: Optional[TelegramChat] = None

    def describe(self) -> tuple[Optional[TelegramUser], str]:
        """Sender (when known) and a printable origin name."""
        if self.type == "user" and self.sender_user:
            user = self.sender_user
            name = " ".join(p for p in (user.first_name, user.last_name) if p)
            return user, name or "Unknown User"
        if self.type == "chat" and self.sender_chat:
            return None, self.sender_chat.title or "Unknown Chat"
        if self.type == "channel" and self.chat:
            return None, self.chat.title or "Unknown Channel"
        if self.type == "hidden_user":
            return None, self.sender_user_name or "Hidden User"
        return None, "Unknown"


class TelegramMessage(BaseModel):
    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None
    forward_origin: Optional[TelegramMessageOrigin] = None
    # Legacy forward fields, still sent by some clients
    forward_from: Optional[TelegramUser] = None
    forward_from_chat: Optional[TelegramChat] = None
    forward_sender_name: Optional[str] = None
    forward_date: Optional[int] = None
    photo: Optional[list[Any]] = None
    document: Optional[Any] = None
    audio: Optional[Any] = None
    voice: Optional[Any] = None
    video: Optional[Any] = None
    video_note: Optional[Any] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def origin(self) -> Optional[TelegramMessageOrigin]:
        if self.forward_origin:
            return self.forward_origin
        if self.forward_from:
            return TelegramMessageOrigin(type="user", date=self.forward_date or 0, sender_user=self.forward_from)
        if self.forward_from_chat:
            return TelegramMessageOrigin(type="channel", date=self.forward_date or 0, chat=self.forward_from_chat)
        if self.forward_sender_name:
            return TelegramMessageOrigin(
                type="hidden_user", date=self.forward_date or 0, sender_user_name=self.forward_sender_name
            )
        return None

    @property
    def media_type(self) -> Optional[str]:
        for kind in ("photo", "video", "document", "audio", "voice", "video_note"):
            if getattr(self, kind):
                return kind
        return None


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None  # callback_data from button


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


class TelegramWebhookResponse(BaseModel):
    success: bool
    message: Optional[str] = None
