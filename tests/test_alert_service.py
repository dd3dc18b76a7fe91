from types import SimpleNamespace
from unittest.mock import patch

from listingbot.services.alert_service import alert_critical, format_alert, send_alert


def settings(token="alert-token", chat_id="-100500"):
    return SimpleNamespace(
        alert_bot_token=token,
        alert_chat_id=chat_id,
        telegram_api_base_url="https://api.telegram.org",
    )


class TestFormatAlert:
    def test_level_and_message(self):
        text = format_alert("ERROR", "Listing write failed")

        assert text.startswith("❌ <b>ERROR</b>")
        assert "Listing write failed" in text

    def test_context_is_escaped(self):
        text = format_alert("CRITICAL", "x", {"conversation_id": "42", "error": "<timeout>"})

        assert "conversation_id: 42" in text
        assert "&lt;timeout&gt;" in text
        assert "<pre>" in text


class TestSendAlert:
    @patch("listingbot.services.alert_service.TelegramService")
    @patch("listingbot.services.alert_service.get_settings")
    def test_returns_false_when_not_configured(self, mock_settings, mock_telegram_class):
        mock_settings.return_value = settings(token=None, chat_id=None)

        assert send_alert("ERROR", "Test message") is False
        mock_telegram_class.assert_not_called()

    @patch("listingbot.services.alert_service.TelegramService")
    @patch("listingbot.services.alert_service.get_settings")
    def test_sends_through_alert_bot(self, mock_settings, mock_telegram_class):
        mock_settings.return_value = settings()
        mock_telegram_class.return_value.send_message.return_value = {"ok": True}

        result = send_alert("ERROR", "Reply delivery failed", {"conversation_id": "42"})

        assert result is True
        assert mock_telegram_class.call_args[0][0] == "alert-token"
        chat_id, text = mock_telegram_class.return_value.send_message.call_args[0]
        assert chat_id == "-100500"
        assert "Reply delivery failed" in text
        assert "conversation_id: 42" in text

    @patch("listingbot.services.alert_service.TelegramService")
    @patch("listingbot.services.alert_service.get_settings")
    def test_returns_false_when_telegram_rejects(self, mock_settings, mock_telegram_class):
        mock_settings.return_value = settings()
        mock_telegram_class.return_value.send_message.return_value = {"ok": False, "error": "offline"}

        assert send_alert("ERROR", "Test") is False


class TestAlertCritical:
    @patch("listingbot.services.alert_service.send_alert")
    def test_uses_critical_level(self, mock_send):
        alert_critical("boom", {"a": 1})
        mock_send.assert_called_once_with("CRITICAL", "boom", {"a": 1})
