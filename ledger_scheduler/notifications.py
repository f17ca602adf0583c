"""
Notification sinks for budget alerts and debt payment reminders.

Delivery is fire-and-forget: ``safe_emit`` logs a failed delivery and never
lets it reach the calculation that produced the alert.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

import requests

LOGGER = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Writes alerts to the log and keeps them for inspection"""

    def __init__(self):
        self.sent: List[Any] = []

    def emit(self, alert: Any):
        payload = alert.to_dict() if hasattr(alert, "to_dict") else alert
        LOGGER.info(f"Notification: {json.dumps(payload, default=str)}")
        self.sent.append(alert)


class WebhookNotificationSink:
    """POSTs each alert as JSON to a webhook"""

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: int = 10):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def emit(self, alert: Any):
        payload = alert.to_dict() if hasattr(alert, "to_dict") else alert
        response = self.session.post(
            self.url,
            data=json.dumps(payload, default=str),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()


def safe_emit(sink, alert: Any) -> bool:
    """Deliver ``alert``; returns False instead of raising when delivery fails"""
    try:
        sink.emit(alert)
        return True
    except Exception as e:
        LOGGER.warning(f"Failed to deliver {getattr(alert, 'kind', 'notification')}: {e}")
        return False
