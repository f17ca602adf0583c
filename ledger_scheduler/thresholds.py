"""
Budget Threshold Module
Compares live spend against a budget's notification threshold
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import Budget, BatchFailure, BatchResult, BudgetPeriod
from .periods import period_bounds

LOGGER = logging.getLogger(__name__)


def spend_percentage(amount: float, spend: float) -> float:
    """Raw spend as % of the budget; above 100 means overspent"""
    if amount <= 0:
        return 0.0
    return spend / amount * 100


def budget_progress(amount: float, spend: float) -> Dict[str, float]:
    """
    Spent, remaining and progress for a budget

    ``remaining`` goes negative when overspent; ``progress`` is capped at 100.
    """
    return {
        "spent": spend,
        "remaining": amount - spend,
        "progress": min(100.0, spend_percentage(amount, spend)),
    }


@dataclass
class BudgetAlert:
    budget_id: str
    owner_id: str
    budget_name: str
    category: str
    amount: float
    spent: float
    remaining: float
    progress: float
    raw_progress: float
    threshold: float
    period: BudgetPeriod

    kind = "budget_alert"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "budget_id": self.budget_id,
            "owner_id": self.owner_id,
            "budget_name": self.budget_name,
            "category": self.category,
            "amount": round(self.amount, 2),
            "spent": round(self.spent, 2),
            "remaining": round(self.remaining, 2),
            "progress": self.progress,
            "raw_progress": round(self.raw_progress, 2),
            "threshold": self.threshold,
            "period": self.period.kind,
            "period_start": self.period.start.isoformat(),
            "period_end": self.period.end.isoformat(),
        }


class BudgetThresholdEvaluator:
    """Raises alerts for budgets whose spend crossed the notification threshold"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now

    def evaluate(self, budget: Budget, current_spend: float, as_of: Optional[datetime] = None) -> Optional[BudgetAlert]:
        """
        Args:
            budget: Budget to check
            current_spend: Expense total for the budget's current period
            as_of: Moment whose period bounds are reported (default: clock)

        Returns:
            BudgetAlert when notifications are enabled and spend reached the
            threshold, otherwise None
        """
        if not budget.notifications.enabled:
            return None

        raw = spend_percentage(budget.amount, current_spend)
        if raw < budget.notifications.threshold:
            return None

        progress = budget_progress(budget.amount, current_spend)
        return BudgetAlert(
            budget_id=budget.id,
            owner_id=budget.owner_id,
            budget_name=budget.name,
            category=budget.category_name or "Uncategorized",
            amount=budget.amount,
            spent=current_spend,
            remaining=max(0.0, progress["remaining"]),
            progress=round(progress["progress"]),
            raw_progress=raw,
            threshold=budget.notifications.threshold,
            period=period_bounds(budget.period, as_of or self.clock()),
        )

    def check_all(self,
                  budgets: Iterable[Budget],
                  spend_lookup: Callable[[str], float],
                  as_of: Optional[datetime] = None) -> BatchResult:
        """Evaluate every budget; a failed spend lookup only fails that budget"""
        as_of = as_of or self.clock()
        result = BatchResult(as_of=as_of)

        for budget in budgets:
            try:
                alert = self.evaluate(budget, spend_lookup(budget.id), as_of)
            except Exception as e:
                LOGGER.error(f"Error checking budget {budget.id}: {str(e)}")
                result.failures.append(BatchFailure(budget.id, str(e)))
                continue

            if alert is None:
                result.skipped.append(budget.id)
            else:
                result.items.append(alert)

        return result
