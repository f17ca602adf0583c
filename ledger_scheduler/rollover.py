"""
Budget Rollover Module
Closes budgets past their period end and schedules their successors
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .errors import IdempotencyViolation, NotFoundError
from .models import Budget, BudgetPeriod, BatchFailure, BatchResult
from .periods import next_period_bounds, period_end

LOGGER = logging.getLogger(__name__)

CREATE_SUCCESSOR = "create_successor"
STOP_RECURRING = "stop_recurring"
CLOSE = "close"


def remaining_for_rollover(amount: float, spend: float) -> float:
    """Unspent amount; an overspent budget carries nothing, never a negative"""
    return max(0.0, amount - spend)


def rollover_amount(budget: Budget, spend: float) -> float:
    """
    Amount carried into the next period under the budget's rollover policy

    none -> 0, full -> remaining, partial -> min(remaining, max_amount)
    """
    remaining = remaining_for_rollover(budget.amount, spend)
    policy = budget.rollover
    if policy.type == "full":
        return remaining
    if policy.type == "partial":
        if not policy.max_amount:
            return 0.0
        return min(remaining, policy.max_amount)
    return 0.0


def closing_date(budget: Budget) -> datetime:
    """End date of the budget, or the end of the period it started in"""
    return budget.end_date or period_end(budget.period, budget.start_date)


@dataclass
class RolloverDecision:
    budget: Budget
    action: str
    spend: float
    rollover_amount: float
    successor: Optional[Budget] = None
    new_period: Optional[BudgetPeriod] = None


@dataclass
class RolloverOutcome:
    closed_budget_id: str
    owner_id: str
    action: str
    rollover_amount: float
    new_budget_id: Optional[str] = None
    new_amount: Optional[float] = None
    new_period: Optional[BudgetPeriod] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "closed_budget_id": self.closed_budget_id,
            "owner_id": self.owner_id,
            "action": self.action,
            "rollover_amount": round(self.rollover_amount, 2),
            "new_budget_id": self.new_budget_id,
            "new_amount": self.new_amount,
            "new_period": self.new_period.to_dict() if self.new_period else None,
        }


class BudgetRolloverProcessor:
    """Carries unspent budget into successor budgets at period end"""

    def __init__(self, store=None, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            store: Budget store; only needed for ``process_due``
            clock: Returns "now"; defaults to ``datetime.now``
        """
        self.store = store
        self.clock = clock or datetime.now

    def is_due(self, budget: Budget, as_of: datetime) -> bool:
        return budget.is_recurring and not budget.rolled_over and closing_date(budget) <= as_of

    def plan(self, budget: Budget, spend: float) -> RolloverDecision:
        """
        Decide what happens to ``budget`` at the end of its period

        Pure: nothing is written. Only a positive rollover amount gets a
        successor; otherwise the budget is closed. Open-ended budgets have no
        period boundary to roll at, so their recurrence is stopped instead.
        """
        amount = rollover_amount(budget, spend)

        if budget.end_date is None:
            return RolloverDecision(budget=budget, action=STOP_RECURRING, spend=spend, rollover_amount=0.0)

        if amount <= 0:
            return RolloverDecision(budget=budget, action=CLOSE, spend=spend, rollover_amount=0.0)

        period = next_period_bounds(budget.period, budget.end_date)
        successor = replace(
            budget,
            id=None,
            amount=round(budget.amount + amount, 2),
            start_date=period.start,
            end_date=period.end,
            rollover=replace(budget.rollover),
            notifications=replace(budget.notifications),
            rolled_over=False,
        )
        return RolloverDecision(
            budget=budget,
            action=CREATE_SUCCESSOR,
            spend=spend,
            rollover_amount=amount,
            successor=successor,
            new_period=period,
        )

    def process_due(self,
                    as_of: Optional[datetime] = None,
                    time_budget: Optional[float] = None,
                    owner_id: Optional[str] = None) -> BatchResult:
        """
        Roll over every due budget

        Args:
            as_of: Moment to evaluate against (default: clock)
            time_budget: Seconds after which remaining budgets are deferred
            owner_id: Restrict the batch to one owner

        Returns:
            BatchResult with RolloverOutcome items
        """
        as_of = as_of or self.clock()
        result = BatchResult(as_of=as_of)
        budgets = [b for b in self.store.find_due_budgets(as_of, owner_id=owner_id) if self.is_due(b, as_of)]
        LOGGER.info(f"Processing {len(budgets)} budget rollovers due at {as_of.isoformat()}")

        started = time.monotonic()
        for index, budget in enumerate(budgets):
            if time_budget is not None and time.monotonic() - started >= time_budget:
                result.deferred.extend(b.id for b in budgets[index:])
                LOGGER.warning(f"Rollover batch out of time, deferring {len(result.deferred)} budgets")
                break

            try:
                outcome = self._apply(budget)
                if outcome is None:
                    result.skipped.append(budget.id)
                else:
                    result.items.append(outcome)
            except IdempotencyViolation:
                LOGGER.info(f"Budget {budget.id} already rolled over, skipping")
                result.skipped.append(budget.id)
            except NotFoundError as e:
                LOGGER.error(f"Skipping budget {budget.id}: {e}")
                result.failures.append(BatchFailure(budget.id, str(e), kind="not_found"))
            except Exception as e:
                LOGGER.error(f"Error rolling over budget {budget.id}: {str(e)}")
                result.failures.append(BatchFailure(budget.id, str(e)))

        LOGGER.info(
            f"Rollover batch completed: {result.processed} processed, "
            f"{len(result.skipped)} skipped, {len(result.failures)} failed"
        )
        return result

    def _apply(self, budget: Budget) -> Optional[RolloverOutcome]:
        spend = self.store.current_period_spend(budget.id)
        decision = self.plan(budget, spend)
        outcome = RolloverOutcome(
            closed_budget_id=budget.id,
            owner_id=budget.owner_id,
            action=decision.action,
            rollover_amount=decision.rollover_amount,
        )

        if decision.action == STOP_RECURRING:
            self.store.set_recurring(budget.id, False)
            LOGGER.info(f"Budget {budget.id} has no end date, recurrence stopped")
            return outcome

        if decision.action == CREATE_SUCCESSOR:
            if self.store.find_successor(decision.successor) is not None:
                self.store.mark_rolled_over(budget.id)
                return None
            outcome.new_budget_id = self.store.create_budget(decision.successor)
            outcome.new_amount = decision.successor.amount
            outcome.new_period = decision.new_period
            LOGGER.info(
                f"Budget {budget.id} rolled {decision.rollover_amount:.2f} into {outcome.new_budget_id} "
                f"({decision.new_period.start.date()} - {decision.new_period.end.date()})"
            )
        else:
            LOGGER.info(f"Budget {budget.id} closed with nothing to roll over")

        self.store.mark_rolled_over(budget.id)
        return outcome
