from unittest.mock import MagicMock, Mock, patch

from app.services.alert_service import (
    alert_critical,
    alert_warning,
    send_alert,
)


def _ok_client(mock_client_class, status_code=200):
    mock_client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = mock_client
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_client.post.return_value = mock_response
    return mock_client


class TestSendAlert:
    @patch("app.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("app.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert send_alert("ERROR", "Test message") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = _ok_client(mock_client_class)

        result = send_alert("WARNING", "WhatsApp token expired")

        assert result is True
        mock_client.post.assert_called_once()
        call_args = mock_client.post.call_args
        assert "api.telegram.org" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "WARNING" in json_data["text"]
        assert "clinic-inbox" in json_data["text"]

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_includes_context_in_message(self, mock_client_class):
        mock_client = _ok_client(mock_client_class)

        send_alert("WARNING", "Credential marked as error", {"tenant_id": "abc-123"})

        json_data = mock_client.post.call_args[1]["json"]
        assert "tenant_id" in json_data["text"]
        assert "abc-123" in json_data["text"]

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_returns_false_on_telegram_error(self, mock_client_class):
        _ok_client(mock_client_class, status_code=400)
        assert send_alert("ERROR", "Test message") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_returns_false_on_exception(self, mock_client_class):
        mock_client_class.return_value.__enter__.side_effect = Exception("Network error")
        assert send_alert("ERROR", "Test message") is False


class TestAlertShortcuts:
    @patch("app.services.alert_service.send_alert")
    def test_alert_critical_calls_send_alert_with_critical_level(self, mock_send):
        mock_send.return_value = True

        result = alert_critical("Idle sweep failing")

        mock_send.assert_called_once_with("CRITICAL", "Idle sweep failing", None)
        assert result is True

    @patch("app.services.alert_service.send_alert")
    def test_alert_warning_calls_send_alert_with_warning_level(self, mock_send):
        mock_send.return_value = True

        result = alert_warning("Token expired", {"tenant_id": "t1"})

        mock_send.assert_called_once_with("WARNING", "Token expired", {"tenant_id": "t1"})
        assert result is True


class TestAlertEmojis:
    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_warning_has_correct_emoji(self, mock_client_class):
        mock_client = _ok_client(mock_client_class)
        send_alert("WARNING", "Test")
        assert "⚠️" in mock_client.post.call_args[1]["json"]["text"]

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_critical_has_correct_emoji(self, mock_client_class):
        mock_client = _ok_client(mock_client_class)
        send_alert("CRITICAL", "Test")
        assert "🔥" in mock_client.post.call_args[1]["json"]["text"]
