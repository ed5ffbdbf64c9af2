from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from crm_intake.main import app
from crm_intake.schemas.events import CallbackEvent, CommandEvent, ForwardedMessageEvent, TextEvent
from crm_intake.schemas.telegram import TelegramCallbackQuery, TelegramChat, TelegramMessage, TelegramUpdate, TelegramUser
from crm_intake.services.event_parser import parse_update
from crm_intake.services.result import RESUME_FAILED, Result
from crm_intake.services.wiring import get_dispatcher


def message_payload(**fields):
    payload = {
        "message_id": 10,
        "date": 1714996800,
        "chat": {"id": 100, "type": "private"},
        "from": {"id": 7, "first_name": "Alice", "last_name": "Smith", "username": "alice"},
    }
    payload.update(fields)
    return payload


class TestTelegramSchemas:
    def test_telegram_user(self):
        user = TelegramUser(id=123456, first_name="Jane", last_name="Doe", username="jane_doe")
        assert user.id == 123456
        assert user.first_name == "Jane"
        assert user.is_bot is False

    def test_telegram_message_maps_from(self):
        msg = TelegramMessage(**message_payload(text="hello"))
        assert msg.from_user.first_name == "Alice"
        assert msg.origin is None

    def test_forward_origin_user(self):
        msg = TelegramMessage(
            **message_payload(
                text="Hi, I'm Jane",
                forward_origin={"type": "user", "date": 1714990000, "sender_user": {"id": 55, "first_name": "Jane", "last_name": "Doe"}},
            )
        )
        sender, name = msg.origin.describe()
        assert sender.id == 55
        assert name == "Jane Doe"

    def test_legacy_forward_fields(self):
        msg = TelegramMessage(**message_payload(text="x", forward_sender_name="Secret Person", forward_date=1714990000))
        assert msg.origin.type == "hidden_user"
        assert msg.origin.describe() == (None, "Secret Person")

    def test_media_type(self):
        msg = TelegramMessage(**message_payload(voice={"file_id": "abc"}))
        assert msg.media_type == "voice"

    def test_telegram_callback_query(self):
        callback = TelegramCallbackQuery(id="query123", data="crm:confirm", **{"from": TelegramUser(id=123, first_name="Alice")})
        assert callback.id == "query123"
        assert callback.data == "crm:confirm"
        assert callback.from_user.id == 123


class TestParseUpdate:
    def test_plain_text(self):
        event = parse_update(TelegramUpdate(update_id=1, message=message_payload(text="create a person")))
        assert isinstance(event, TextEvent)
        assert event.text == "create a person"
        assert event.key == (100, 7)
        assert event.caller.display_name == "Alice Smith"

    def test_command_with_bot_suffix(self):
        event = parse_update(TelegramUpdate(update_id=1, message=message_payload(text="/done@crm_bot create a person")))
        assert isinstance(event, CommandEvent)
        assert event.command == "done"
        assert event.args == "create a person"

    def test_command_args_keep_newlines(self):
        event = parse_update(TelegramUpdate(update_id=1, message=message_payload(text="/new\ncreate task\nfor Bob")))
        assert event.command == "new"
        assert event.args == "create task\nfor Bob"

    def test_forward_becomes_queued_message(self):
        update = TelegramUpdate(
            update_id=1,
            message=message_payload(
                text="Let's talk pricing",
                forward_origin={"type": "user", "date": 1714990000, "sender_user": {"id": 55, "first_name": "Jane", "username": "jane"}},
            ),
        )
        event = parse_update(update)
        assert isinstance(event, ForwardedMessageEvent)
        assert event.message.text == "Let's talk pricing"
        assert event.message.sender == "@jane"
        assert event.message.date == 1714990000

    def test_forwarded_voice_note(self):
        update = TelegramUpdate(
            update_id=1,
            message=message_payload(voice={"file_id": "v"}, forward_sender_name="Jane", forward_date=1714990000),
        )
        event = parse_update(update)
        assert event.message.has_media is True
        assert event.message.media_type == "voice note"

    def test_callback(self):
        update = TelegramUpdate(
            update_id=1,
            callback_query={
                "id": "cb-1",
                "from": {"id": 7, "first_name": "Alice"},
                "data": "crm:confirm",
                "message": message_payload(message_id=501, text="proposal"),
            },
        )
        event = parse_update(update)
        assert isinstance(event, CallbackEvent)
        assert event.message_id == 501
        assert event.data == "crm:confirm"

    def test_edited_message_ignored(self):
        assert parse_update(TelegramUpdate(update_id=1, edited_message=message_payload(text="edit"))) is None

    def test_sticker_without_text_ignored(self):
        assert parse_update(TelegramUpdate(update_id=1, message=message_payload())) is None


class TestTelegramWebhook:
    @pytest.fixture
    def dispatcher(self):
        dispatcher = MagicMock()
        dispatcher.deliver.return_value = Result.success(None)
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher
        yield dispatcher
        app.dependency_overrides.clear()

    @pytest.fixture
    def client(self, dispatcher):
        return TestClient(app)

    def test_text_update_is_delivered(self, client, dispatcher):
        response = client.post("/telegram-webhook", json={"update_id": 1, "message": message_payload(text="/help")})
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "command"}
        event = dispatcher.deliver.call_args[0][0]
        assert isinstance(event, CommandEvent)
        assert event.command == "help"

    def test_no_actionable_content(self, client, dispatcher):
        response = client.post("/telegram-webhook", json={"update_id": 2, "edited_message": message_payload(text="x")})
        assert response.status_code == 200
        assert response.json()["message"] == "No actionable content"
        dispatcher.deliver.assert_not_called()

    def test_invalid_json_still_answers_200(self, client, dispatcher):
        response = client.post("/telegram-webhook", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_unsupported_update(self, client, dispatcher):
        response = client.post("/telegram-webhook", json={"message": "missing update id"})
        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Unsupported update"}

    def test_delivery_failure_reported_in_body(self, client, dispatcher):
        dispatcher.deliver.return_value = Result.failure("No hook", RESUME_FAILED)
        response = client.post("/telegram-webhook", json={"update_id": 3, "message": message_payload(text="hi")})
        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "resume_failed"}

    def test_delivery_crash_is_caught(self, client, dispatcher):
        dispatcher.deliver.side_effect = RuntimeError("boom")
        response = client.post("/telegram-webhook", json={"update_id": 4, "message": message_payload(text="hi")})
        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "boom"}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
