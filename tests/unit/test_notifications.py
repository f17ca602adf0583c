"""
Test Suite: Alert delivery sinks
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from ledger_scheduler.notifications import (
    LoggingNotificationSink,
    WebhookNotificationSink,
    safe_emit,
)
from ledger_scheduler.thresholds import BudgetThresholdEvaluator


@pytest.fixture
def alert(make_budget, clock):
    return BudgetThresholdEvaluator(clock=clock).evaluate(make_budget(), 450.0)


class TestLoggingSink:

    def test_logs_and_keeps_alert(self, alert, caplog):
        sink = LoggingNotificationSink()

        with caplog.at_level("INFO", logger="ledger_scheduler.notifications"):
            sink.emit(alert)

        assert sink.sent == [alert]
        assert "budget_alert" in caplog.text


class TestWebhookSink:

    def test_posts_json_payload(self, alert):
        session = MagicMock()
        sink = WebhookNotificationSink("https://hooks.example.test/budget", session=session, timeout=5)

        sink.emit(alert)

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example.test/budget"
        assert kwargs["headers"] == {"Content-Type": "application/json"}
        assert kwargs["timeout"] == 5
        body = json.loads(kwargs["data"])
        assert body["budget_id"] == "bud-1"
        assert body["progress"] == 90
        session.post.return_value.raise_for_status.assert_called_once()

    def test_http_error_propagates_from_emit(self, alert):
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")

        with pytest.raises(requests.HTTPError):
            WebhookNotificationSink("https://hooks.example.test", session=session).emit(alert)


class TestSafeEmit:

    def test_success(self, alert):
        sink = LoggingNotificationSink()
        assert safe_emit(sink, alert) is True

    def test_failure_is_logged_not_raised(self, alert, caplog):
        sink = MagicMock()
        sink.emit.side_effect = requests.ConnectionError("refused")

        with caplog.at_level("WARNING", logger="ledger_scheduler.notifications"):
            assert safe_emit(sink, alert) is False

        assert "Failed to deliver budget_alert" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
