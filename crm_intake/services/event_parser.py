"""Telegram update -> one decoded InboundEvent. The engine never sees raw payloads."""

from typing import Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.events import CallbackEvent, CommandEvent, ForwardedMessageEvent, InboundEvent, TextEvent
from crm_intake.schemas.session import CallerInfo, ForwardedMessage
from crm_intake.schemas.telegram import TelegramMessage, TelegramUpdate, TelegramUser

logger = get_logger("event_parser")

MEDIA_LABELS = {"voice": "voice note", "video_note": "video message"}


def caller_from(user: Optional[TelegramUser]) -> CallerInfo:
    if user is None:
        return CallerInfo()
    return CallerInfo(
        user_id=user.id,
        first_name=user.first_name or None,
        last_name=user.last_name,
        username=user.username,
    )


def forwarded_message(message: TelegramMessage) -> Optional[ForwardedMessage]:
    origin = message.origin
    if origin is None:
        return None
    sender, chat_name = origin.describe()
    media_type = message.media_type
    return ForwardedMessage(
        text=message.text or message.caption or "",
        sender_username=sender.username if sender else None,
        sender_first_name=sender.first_name if sender else None,
        sender_last_name=sender.last_name if sender else None,
        chat_name=chat_name,
        date=origin.date or message.date,
        message_id=message.message_id,
        has_media=media_type is not None,
        media_type=MEDIA_LABELS.get(media_type, media_type),
    )


def split_command(text: str) -> tuple[str, str]:
    """Split "/done@crm_bot create a person" into ("done", "create a person")."""
    parts = text.split(maxsplit=1)
    command = parts[0][1:].split("@", 1)[0]
    return command, parts[1].strip() if len(parts) > 1 else ""


def parse_update(update: TelegramUpdate) -> Optional[InboundEvent]:
    if update.callback_query:
        query = update.callback_query
        if not query.data or query.message is None:
            return None
        return CallbackEvent(
            chat_id=query.message.chat.id,
            user_id=query.from_user.id,
            message_id=query.message.message_id,
            chat_type=query.message.chat.type,
            caller=caller_from(query.from_user),
            callback_id=query.id,
            data=query.data,
        )

    message = update.message
    if message is None or message.from_user is None:
        # Edited messages and channel posts are not conversation input
        return None

    base = {
        "chat_id": message.chat.id,
        "user_id": message.from_user.id,
        "message_id": message.message_id,
        "chat_type": message.chat.type,
        "caller": caller_from(message.from_user),
    }

    forwarded = forwarded_message(message)
    if forwarded is not None:
        return ForwardedMessageEvent(message=forwarded, **base)

    text = (message.text or "").strip()
    if not text:
        logger.debug(f"Ignoring non-text message {message.message_id}")
        return None
    if text.startswith("/"):
        command, args = split_command(text)
        return CommandEvent(command=command, args=args, **base)
    return TextEvent(text=text, **base)
