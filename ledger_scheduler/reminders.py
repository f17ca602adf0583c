"""
Bill Reminder Module
Picks the reminders whose due date falls inside the notification window
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .models import Reminder
from .periods import start_of_day

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7


def days_until_due(due_date: datetime, as_of: datetime) -> int:
    """Whole days left until ``due_date``, rounded up; 0 when due right now"""
    return max(0, math.ceil((due_date - as_of).total_seconds() / 86400))


@dataclass
class ReminderNotice:
    reminder_id: str
    owner_id: str
    name: str
    type: str
    due_date: datetime
    days_until_due: int
    method: str
    amount: Optional[float] = None
    category: Optional[str] = None
    notes: Optional[str] = None

    kind = "bill_reminder"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reminder_id": self.reminder_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "type": self.type,
            "due_date": self.due_date.isoformat(),
            "days_until_due": self.days_until_due,
            "method": self.method,
            "amount": round(self.amount, 2) if self.amount is not None else None,
            "category": self.category,
            "notes": self.notes,
        }


def is_reminder_due(reminder: Reminder, as_of: datetime, window_days: int = DEFAULT_WINDOW_DAYS) -> bool:
    """
    True when an active reminder is due within ``window_days`` and has not
    been sent yet today
    """
    if not reminder.is_active:
        return False
    if not as_of <= reminder.due_date <= as_of + timedelta(days=window_days):
        return False
    return reminder.last_sent is None or reminder.last_sent < start_of_day(as_of)


def reminders_due(reminders: Iterable[Reminder],
                  as_of: datetime,
                  window_days: int = DEFAULT_WINDOW_DAYS) -> List[ReminderNotice]:
    """
    Notices for every reminder that should go out at ``as_of``

    Pure: ``last_sent`` is not touched; the caller records delivery.
    """
    notices = []
    for reminder in reminders:
        if not is_reminder_due(reminder, as_of, window_days):
            continue
        notices.append(ReminderNotice(
            reminder_id=reminder.id,
            owner_id=reminder.owner_id,
            name=reminder.name,
            type=reminder.type,
            due_date=reminder.due_date,
            days_until_due=days_until_due(reminder.due_date, as_of),
            method=reminder.method,
            amount=reminder.amount,
            category=reminder.category,
            notes=reminder.notes,
        ))

    notices.sort(key=lambda notice: notice.due_date)
    LOGGER.info(f"{len(notices)} reminders due within {window_days} days of {as_of.isoformat()}")
    return notices
