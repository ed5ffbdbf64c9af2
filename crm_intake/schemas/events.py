from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from crm_intake.schemas.session import CallerInfo, ForwardedMessage, SessionKey


class BaseEvent(BaseModel):
    """One decoded inbound event with the identity of the user who sent it."""

    chat_id: int
    user_id: int
    message_id: Optional[int] = None
    chat_type: str = "private"
    caller: CallerInfo = Field(default_factory=CallerInfo)

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.chat_id, self.user_id)


class ForwardedMessageEvent(BaseEvent):
    kind: Literal["forwarded_message"] = "forwarded_message"
    message: ForwardedMessage


class CommandEvent(BaseEvent):
    kind: Literal["command"] = "command"
    command: str  # without leading slash or @botname
    args: str = ""


class TextEvent(BaseEvent):
    kind: Literal["text"] = "text"
    text: str


class CallbackEvent(BaseEvent):
    kind: Literal["callback"] = "callback"
    callback_id: str
    data: str


InboundEvent = Annotated[
    Union[ForwardedMessageEvent, CommandEvent, TextEvent, CallbackEvent],
    Field(discriminator="kind"),
]
