"""
Ledger entities consumed and produced by the scheduling engine.

Every entity carries an ``owner_id``; the engine treats it as an opaque
partition key and never mixes owners inside one computation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ValidationError

PERIOD_KINDS = ("weekly", "monthly", "quarterly", "yearly")
FREQUENCIES = ("daily", "weekly", "monthly", "yearly")
PAYMENT_FREQUENCIES = ("weekly", "bi-weekly", "monthly", "yearly")
ROLLOVER_TYPES = ("none", "full", "partial")
TRANSACTION_TYPES = ("expense", "income")
REMINDER_TYPES = ("bill", "subscription", "debt", "custom")
REMINDER_FREQUENCIES = ("once",) + FREQUENCIES
NOTIFICATION_METHODS = ("email", "push", "both")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class RecurringTemplate:
    """A transaction definition that spawns dated instances on a schedule"""

    id: str
    owner_id: str
    amount: float
    description: str
    account_id: str
    frequency: str
    next_occurrence: Optional[datetime]
    category_id: Optional[str] = None
    type: str = "expense"
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    series_id: Optional[str] = None
    is_recurring: bool = True

    @property
    def series_key(self) -> str:
        # The first template of a series is its own key
        return self.series_id or self.id


@dataclass
class TransactionInstance:
    """A dated transaction materialized from a template or a debt payment"""

    owner_id: str
    amount: float
    description: str
    account_id: Optional[str]
    date: datetime
    type: str = "expense"
    category_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    series_id: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["date"] = _iso(self.date)
        return payload


@dataclass(frozen=True)
class BalanceInstruction:
    """Apply ``delta`` to the balance of ``account_id``"""

    account_id: str
    owner_id: str
    delta: float

    @classmethod
    def for_transaction(cls, instance: TransactionInstance) -> Optional["BalanceInstruction"]:
        if not instance.account_id:
            return None
        delta = instance.amount if instance.type == "income" else -instance.amount
        return cls(account_id=instance.account_id, owner_id=instance.owner_id, delta=delta)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BudgetPeriod:
    """Inclusive calendar bounds of the period containing ``anchor``"""

    kind: str
    anchor: datetime
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "start": _iso(self.start),
            "end": _iso(self.end),
        }


@dataclass
class RolloverPolicy:
    type: str = "none"
    max_amount: Optional[float] = None

    def __post_init__(self):
        if self.type not in ROLLOVER_TYPES:
            raise ValidationError(f"Unknown rollover type: {self.type!r}")
        if self.max_amount is not None and self.max_amount < 0:
            raise ValidationError("Rollover max_amount cannot be negative")


@dataclass
class NotificationPolicy:
    enabled: bool = True
    threshold: float = 80.0

    def __post_init__(self):
        if not 0 <= self.threshold <= 100:
            raise ValidationError(f"Threshold must be between 0 and 100, got {self.threshold}")


@dataclass
class Budget:
    """Spending cap for one calendar period"""

    id: Optional[str]
    owner_id: str
    name: str
    amount: float
    period: str
    start_date: datetime
    end_date: Optional[datetime] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    is_recurring: bool = False
    rollover: RolloverPolicy = field(default_factory=RolloverPolicy)
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)
    rolled_over: bool = False

    def __post_init__(self):
        if self.period not in PERIOD_KINDS:
            raise ValidationError(f"Unknown budget period: {self.period!r}")
        if self.amount < 0:
            raise ValidationError("Budget amount cannot be negative")


@dataclass
class Debt:
    """A loan or credit line being paid down"""

    id: str
    owner_id: str
    name: str
    initial_amount: float
    current_amount: float
    interest_rate: float
    payment_frequency: str
    payment_amount: float
    start_date: datetime
    lender: str = ""
    type: str = "loan"
    end_date: Optional[datetime] = None
    is_paid: bool = False
    account_id: Optional[str] = None

    def __post_init__(self):
        if self.payment_frequency not in PAYMENT_FREQUENCIES:
            raise ValidationError(f"Unknown payment frequency: {self.payment_frequency!r}")
        if not 0 <= self.interest_rate <= 100:
            raise ValidationError("Interest rate must be between 0 and 100")

    @property
    def monthly_rate(self) -> float:
        return self.interest_rate / 100 / 12


@dataclass
class Reminder:
    """A bill or other payment the owner wants to be told about before it is due"""

    id: str
    owner_id: str
    name: str
    type: str
    due_date: datetime
    frequency: str = "once"
    amount: Optional[float] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    method: str = "both"
    days_before: List[int] = field(default_factory=lambda: [1, 3, 7])
    last_sent: Optional[datetime] = None

    def __post_init__(self):
        if self.type not in REMINDER_TYPES:
            raise ValidationError(f"Unknown reminder type: {self.type!r}")
        if self.frequency not in REMINDER_FREQUENCIES:
            raise ValidationError(f"Unknown reminder frequency: {self.frequency!r}")
        if self.method not in NOTIFICATION_METHODS:
            raise ValidationError(f"Unknown notification method: {self.method!r}")
        if any(not 0 <= days <= 30 for days in self.days_before):
            raise ValidationError("Days before must be between 0 and 30")


@dataclass
class BatchFailure:
    entity_id: Any
    error: str
    kind: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    """
    Outcome of one scheduler tick over a set of due entities.

    ``items`` holds per-entity results, ``skipped`` ids that were already
    processed elsewhere, ``failures`` per-entity errors, and ``deferred`` ids
    left for the next tick because the batch deadline passed.
    """

    as_of: datetime
    items: List[Any] = field(default_factory=list)
    skipped: List[Any] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)
    deferred: List[Any] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": _iso(self.as_of),
            "processed": self.processed,
            "items": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "skipped": list(self.skipped),
            "failures": [failure.to_dict() for failure in self.failures],
            "deferred": list(self.deferred),
        }
