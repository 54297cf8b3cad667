"""
Tests for notification dispatchers
"""

import logging
import pytest
from decimal import Decimal
from datetime import date
from unittest.mock import Mock, patch

import requests

from credit_core.notifications import (
    NotificationKind, LogNotificationDispatcher, WebhookNotificationDispatcher,
    InMemoryNotificationDispatcher, create_dispatcher, render_subject
)
from credit_core.errors import NotificationError


PAYLOAD = {
    "credit_id": "credit-1",
    "payment_number": 3,
    "due_date": date(2024, 4, 15),
    "payment_amount": Decimal('9797.97'),
}


class TestRenderSubject:

    def test_subject_includes_payment_number(self):
        assert render_subject(NotificationKind.PAYMENT_OVERDUE, PAYLOAD) == "Overdue credit payment #3"

    def test_subject_without_payment_number(self):
        assert render_subject(NotificationKind.CREDIT_ISSUED, {}) == "Credit issued"


class TestWebhookDispatcher:
    """Test webhook delivery over requests"""

    def setup_method(self):
        self.dispatcher = WebhookNotificationDispatcher("https://hooks.example/notify", timeout=3)

    @patch('requests.post')
    def test_posts_json(self, mock_post):
        mock_post.return_value = Mock(status_code=200)

        self.dispatcher.send(NotificationKind.PAYMENT_OVERDUE, "user-1", PAYLOAD)

        args, kwargs = mock_post.call_args
        assert args[0] == "https://hooks.example/notify"
        assert kwargs["timeout"] == 3
        body = kwargs["json"]
        assert body["type"] == "payment_overdue"
        assert body["recipient_id"] == "user-1"
        assert body["payload"]["payment_amount"] == "9797.97"
        assert body["payload"]["due_date"] == "2024-04-15"

    @patch('requests.post')
    def test_error_status_raises(self, mock_post):
        mock_post.return_value = Mock(status_code=503)
        with pytest.raises(NotificationError, match="503"):
            self.dispatcher.send(NotificationKind.PAYMENT_SETTLED, "user-1", PAYLOAD)

    @patch('requests.post')
    def test_transport_error_raises(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(NotificationError, match="refused"):
            self.dispatcher.send(NotificationKind.PAYMENT_SETTLED, "user-1", PAYLOAD)


class TestLogDispatcher:

    def test_logs_notification(self, caplog):
        logger = logging.getLogger("test.notifications")
        dispatcher = LogNotificationDispatcher(logger)

        with caplog.at_level(logging.INFO, logger="test.notifications"):
            dispatcher.send(NotificationKind.CREDIT_ISSUED, "user-7", {"credit_id": "c"})

        assert "Notification to user-7: Credit issued" in caplog.text
        assert caplog.records[0].action == "credit_issued"


class TestInMemoryDispatcher:

    def test_records_messages(self):
        dispatcher = InMemoryNotificationDispatcher()
        dispatcher.send(NotificationKind.PAYMENT_OVERDUE, "user-1", PAYLOAD)
        dispatcher.send(NotificationKind.PAYMENT_SETTLED, "user-1", PAYLOAD)

        assert len(dispatcher.sent) == 2
        overdue = dispatcher.of_kind(NotificationKind.PAYMENT_OVERDUE)
        assert overdue[0].recipient == "user-1"
        assert overdue[0].payload["payment_number"] == 3

    def test_failure_mode(self):
        dispatcher = InMemoryNotificationDispatcher(fail=True)
        with pytest.raises(NotificationError):
            dispatcher.send(NotificationKind.PAYMENT_OVERDUE, "user-1", PAYLOAD)
        assert dispatcher.sent == []


class TestFactory:

    def test_webhook_when_url_configured(self):
        dispatcher = create_dispatcher("https://hooks.example", timeout=2.0)
        assert isinstance(dispatcher, WebhookNotificationDispatcher)
        assert dispatcher.timeout == 2.0

    def test_log_by_default(self):
        assert isinstance(create_dispatcher(None), LogNotificationDispatcher)
