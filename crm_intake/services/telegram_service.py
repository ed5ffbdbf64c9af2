from abc import ABC, abstractmethod
from typing import Optional

import httpx

from crm_intake.config import settings
from crm_intake.logging_config import get_logger

logger = get_logger("telegram_service")


class ChatClient(ABC):
    """Outbound side of the chat platform, as seen by the conversation engine."""

    @abstractmethod
    def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> Optional[int]:
        """Send a message and return its id, or None when delivery failed."""

    @abstractmethod
    def edit_message(self, chat_id: int, message_id: int, text: str, reply_markup: Optional[dict] = None) -> bool:
        pass

    @abstractmethod
    def answer_callback(self, callback_id: str, text: Optional[str] = None, show_alert: bool = False) -> bool:
        pass

    @abstractmethod
    def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> bool:
        pass


class TelegramService(ChatClient):
    """Service for sending messages to Telegram."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout_seconds: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout_seconds = timeout_seconds

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error on {method}: {e}")
            return {"ok": False, "error": str(e)}

    def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
        reply_to_message_id: Optional[int] = None,
    ) -> Optional[int]:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup
        if reply_to_message_id:
            data["reply_to_message_id"] = reply_to_message_id

        result = self._make_request("sendMessage", data)
        if not result.get("ok"):
            logger.warning(f"sendMessage failed: {result.get('description') or result.get('error')}")
            return None
        return result.get("result", {}).get("message_id")

    def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
    ) -> bool:
        """Edit existing message."""
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup

        result = self._make_request("editMessageText", data)
        if not result.get("ok"):
            # "message is not modified" is harmless
            logger.info(f"editMessageText: {result.get('description') or result.get('error')}")
        return bool(result.get("ok"))

    def answer_callback(self, callback_id: str, text: Optional[str] = None, show_alert: bool = False) -> bool:
        """Stop the button spinner, optionally with a toast."""
        data = {"callback_query_id": callback_id}
        if text:
            data["text"] = text
            data["show_alert"] = show_alert
        return bool(self._make_request("answerCallbackQuery", data).get("ok"))

    def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> bool:
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "reaction": [{"type": "emoji", "emoji": emoji}],
        }
        return bool(self._make_request("setMessageReaction", data).get("ok"))


_telegram_service: Optional[TelegramService] = None


def get_telegram_service() -> TelegramService:
    global _telegram_service
    if _telegram_service is None:
        _telegram_service = TelegramService(settings.telegram_bot_token or "")
    return _telegram_service
