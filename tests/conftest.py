"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest


# Ensure the repository root (which contains the ``ledger_scheduler`` package) is importable.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger_scheduler.models import (  # noqa: E402
    Budget,
    Debt,
    NotificationPolicy,
    RecurringTemplate,
    Reminder,
    RolloverPolicy,
)
from ledger_scheduler.store import InMemoryStore  # noqa: E402


OWNER = "user-1"
OTHER_OWNER = "user-2"


class FixedClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 3, 9, 0))


@pytest.fixture
def make_clock():
    return FixedClock


@pytest.fixture
def store():
    """Store seeded with one account and category per owner"""
    store = InMemoryStore()
    store.add_account("acc-1", OWNER, balance=1000.0)
    store.add_account("acc-2", OTHER_OWNER, balance=500.0)
    store.add_category("cat-groceries", OWNER, name="Groceries")
    store.add_category("cat-rent", OTHER_OWNER, name="Rent")
    return store


@pytest.fixture
def make_template():
    def _make(template_id="tpl-1", **overrides):
        fields = dict(
            id=template_id,
            owner_id=OWNER,
            amount=50.0,
            description="Gym membership",
            account_id="acc-1",
            frequency="daily",
            next_occurrence=datetime(2025, 1, 1),
            category_id="cat-groceries",
            tags=["health"],
            notes="auto",
        )
        fields.update(overrides)
        return RecurringTemplate(**fields)

    return _make


@pytest.fixture
def make_budget():
    def _make(budget_id="bud-1", **overrides):
        fields = dict(
            id=budget_id,
            owner_id=OWNER,
            name="Groceries",
            amount=500.0,
            period="monthly",
            start_date=datetime(2025, 5, 1),
            end_date=datetime(2025, 5, 31, 23, 59, 59, 999000),
            category_id="cat-groceries",
            category_name="Groceries",
            is_recurring=True,
            rollover=RolloverPolicy(type="full"),
            notifications=NotificationPolicy(enabled=True, threshold=80),
        )
        fields.update(overrides)
        return Budget(**fields)

    return _make


@pytest.fixture
def make_debt():
    def _make(debt_id="debt-1", **overrides):
        fields = dict(
            id=debt_id,
            owner_id=OWNER,
            name="Car loan",
            lender="Bank",
            initial_amount=1200.0,
            current_amount=1200.0,
            interest_rate=12.0,
            payment_frequency="monthly",
            payment_amount=110.0,
            start_date=datetime(2025, 1, 15),
            account_id="acc-1",
        )
        fields.update(overrides)
        return Debt(**fields)

    return _make


@pytest.fixture
def make_reminder():
    def _make(reminder_id="rem-1", **overrides):
        fields = dict(
            id=reminder_id,
            owner_id=OWNER,
            name="Electricity",
            type="bill",
            due_date=datetime(2025, 1, 6),
            frequency="monthly",
            amount=80.0,
        )
        fields.update(overrides)
        return Reminder(**fields)

    return _make
