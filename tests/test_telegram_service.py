from unittest.mock import MagicMock, patch

import httpx

from crm_intake.services.telegram_service import TelegramService


class TestTelegramService:
    def setup_method(self):
        self.service = TelegramService(bot_token="123:abc")

    def test_base_url(self):
        assert self.service.base_url == "https://api.telegram.org/bot123:abc"

    @patch.object(TelegramService, "_make_request")
    def test_send_message_returns_id(self, mock_request):
        mock_request.return_value = {"ok": True, "result": {"message_id": 77}}
        markup = {"inline_keyboard": [[{"text": "OK", "callback_data": "crm:confirm"}]]}

        message_id = self.service.send_message(100, "<b>hi</b>", reply_markup=markup)

        assert message_id == 77
        method, data = mock_request.call_args.args
        assert method == "sendMessage"
        assert data["parse_mode"] == "HTML"
        assert data["reply_markup"] == markup
        assert data["disable_web_page_preview"] is True

    @patch.object(TelegramService, "_make_request")
    def test_send_failure_returns_none(self, mock_request):
        mock_request.return_value = {"ok": False, "description": "chat not found"}
        assert self.service.send_message(100, "hi") is None

    @patch.object(TelegramService, "_make_request")
    def test_edit_message(self, mock_request):
        mock_request.return_value = {"ok": False, "description": "message is not modified"}

        assert self.service.edit_message(100, 5, "same") is False
        method, data = mock_request.call_args.args
        assert method == "editMessageText"
        assert "reply_markup" not in data

    @patch.object(TelegramService, "_make_request")
    def test_answer_callback_without_toast(self, mock_request):
        mock_request.return_value = {"ok": True}

        assert self.service.answer_callback("cb-1") is True
        assert mock_request.call_args.args == ("answerCallbackQuery", {"callback_query_id": "cb-1"})

    @patch.object(TelegramService, "_make_request")
    def test_answer_callback_with_alert(self, mock_request):
        mock_request.return_value = {"ok": True}

        self.service.answer_callback("cb-1", "This isn't your session", show_alert=True)

        data = mock_request.call_args.args[1]
        assert data["text"] == "This isn't your session"
        assert data["show_alert"] is True

    @patch.object(TelegramService, "_make_request")
    def test_set_reaction(self, mock_request):
        mock_request.return_value = {"ok": True}

        self.service.set_reaction(100, 5, "👀")

        assert mock_request.call_args.args[1]["reaction"] == [{"type": "emoji", "emoji": "👀"}]

    def test_transport_error_is_reported_not_raised(self):
        client_cls = MagicMock()
        client_cls.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("offline")

        with patch("crm_intake.services.telegram_service.httpx.Client", client_cls):
            result = self.service._make_request("getMe")

        assert result["ok"] is False
        assert "offline" in result["error"]
