"""
Test Suite: Budget rollover at period end
"""

from datetime import datetime

import pytest

from ledger_scheduler.errors import NotFoundError
from ledger_scheduler.models import RolloverPolicy
from ledger_scheduler.rollover import (
    CLOSE,
    CREATE_SUCCESSOR,
    STOP_RECURRING,
    BudgetRolloverProcessor,
    closing_date,
    rollover_amount,
)

JUNE_1 = datetime(2025, 6, 1)


class TestRolloverAmount:

    @pytest.mark.parametrize("policy,spend,expected", [
        (RolloverPolicy("none"), 300, 0.0),
        (RolloverPolicy("full"), 300, 200.0),
        (RolloverPolicy("full"), 600, 0.0),
        (RolloverPolicy("partial", 50), 300, 50.0),
        (RolloverPolicy("partial", 500), 300, 200.0),
        (RolloverPolicy("partial", 50), 520, 0.0),
        (RolloverPolicy("partial"), 100, 0.0),
    ])
    def test_policies(self, make_budget, policy, spend, expected):
        assert rollover_amount(make_budget(rollover=policy), spend) == expected

    def test_partial_bounds(self, make_budget):
        for max_amount in (0, 10, 125.5, 499, 500, 1000):
            budget = make_budget(rollover=RolloverPolicy("partial", max_amount))
            for spend in range(-100, 800, 37):
                amount = rollover_amount(budget, spend)
                remaining = max(0, budget.amount - spend)
                assert 0 <= amount <= max_amount
                assert amount <= remaining

    def test_closing_date_falls_back_to_period_end(self, make_budget):
        budget = make_budget(end_date=None, start_date=datetime(2025, 5, 10))
        assert closing_date(budget) == datetime(2025, 5, 31, 23, 59, 59, 999000)


class TestPlan:

    def test_successor_carries_remaining(self, make_budget):
        decision = BudgetRolloverProcessor().plan(make_budget(), spend=300)

        assert decision.action == CREATE_SUCCESSOR
        assert decision.rollover_amount == 200.0
        successor = decision.successor
        assert successor.id is None
        assert successor.amount == 700.0
        assert successor.start_date == datetime(2025, 6, 1)
        assert successor.end_date == datetime(2025, 6, 30, 23, 59, 59, 999000)
        assert successor.name == "Groceries"
        assert successor.category_id == "cat-groceries"
        assert successor.period == "monthly"
        assert successor.rollover.type == "full"
        assert successor.is_recurring is True
        assert successor.rolled_over is False

    def test_overspent_budget_is_closed(self, make_budget):
        decision = BudgetRolloverProcessor().plan(make_budget(), spend=650)

        assert decision.action == CLOSE
        assert decision.rollover_amount == 0.0
        assert decision.successor is None

    def test_none_policy_is_closed(self, make_budget):
        decision = BudgetRolloverProcessor().plan(make_budget(rollover=RolloverPolicy("none")), spend=100)
        assert decision.action == CLOSE

    def test_fully_spent_budget_is_closed(self, make_budget):
        assert BudgetRolloverProcessor().plan(make_budget(), spend=500).action == CLOSE

    def test_open_ended_budget_stops_recurring(self, make_budget):
        decision = BudgetRolloverProcessor().plan(make_budget(end_date=None), spend=100)

        assert decision.action == STOP_RECURRING
        assert decision.successor is None

    def test_quarterly_successor(self, make_budget):
        budget = make_budget(
            period="quarterly",
            start_date=datetime(2025, 4, 1),
            end_date=datetime(2025, 6, 30, 23, 59, 59, 999000),
        )
        period = BudgetRolloverProcessor().plan(budget, spend=100).new_period

        assert period.start == datetime(2025, 7, 1)
        assert period.end == datetime(2025, 9, 30, 23, 59, 59, 999000)

    def test_plan_does_not_touch_policy_objects(self, make_budget):
        budget = make_budget()
        successor = BudgetRolloverProcessor().plan(budget, spend=0).successor
        successor.rollover.type = "none"
        assert budget.rollover.type == "full"


class TestProcessDue:

    def test_rolls_over_and_marks_original(self, store, make_budget):
        store.add_budget(make_budget())
        store.set_spend("bud-1", 420.0)

        result = BudgetRolloverProcessor(store).process_due(JUNE_1)

        assert result.processed == 1
        outcome = result.items[0]
        assert outcome.closed_budget_id == "bud-1"
        assert outcome.rollover_amount == 80.0
        assert outcome.new_amount == 580.0
        assert outcome.new_period.start == JUNE_1

        successor = store.get_budget(outcome.new_budget_id)
        assert successor.amount == 580.0
        assert successor.start_date == JUNE_1
        assert store.get_budget("bud-1").rolled_over is True

    def test_second_run_creates_no_duplicate(self, store, make_budget):
        store.add_budget(make_budget())
        processor = BudgetRolloverProcessor(store)

        processor.process_due(JUNE_1)
        result = processor.process_due(JUNE_1)

        assert result.processed == 0
        assert len(store.budgets) == 2

    def test_existing_successor_is_not_duplicated(self, store, make_budget):
        store.add_budget(make_budget())
        store.add_budget(make_budget(
            "bud-june",
            start_date=JUNE_1,
            end_date=datetime(2025, 6, 30, 23, 59, 59, 999000),
        ))

        result = BudgetRolloverProcessor(store).process_due(JUNE_1)

        assert result.processed == 0
        assert result.skipped == ["bud-1"]
        assert len(store.budgets) == 2
        assert store.get_budget("bud-1").rolled_over is True

    def test_nothing_to_roll_over_closes_without_successor(self, store, make_budget):
        store.add_budget(make_budget(rollover=RolloverPolicy("none")))
        store.set_spend("bud-1", 100.0)

        result = BudgetRolloverProcessor(store).process_due(JUNE_1)

        assert result.items[0].action == CLOSE
        assert result.items[0].new_budget_id is None
        assert len(store.budgets) == 1
        assert store.get_budget("bud-1").rolled_over is True

    def test_not_due_before_period_end(self, store, make_budget):
        store.add_budget(make_budget())
        result = BudgetRolloverProcessor(store).process_due(datetime(2025, 5, 31, 12, 0))
        assert result.processed == 0

    def test_non_recurring_budget_is_ignored(self, store, make_budget):
        store.add_budget(make_budget(is_recurring=False))
        result = BudgetRolloverProcessor(store).process_due(JUNE_1)
        assert result.processed == 0

    def test_open_ended_budget_recurrence_is_stopped(self, store, make_budget):
        store.add_budget(make_budget(end_date=None))

        result = BudgetRolloverProcessor(store).process_due(JUNE_1)

        assert result.items[0].action == STOP_RECURRING
        assert result.items[0].new_budget_id is None
        assert store.get_budget("bud-1").is_recurring is False
        assert len(store.budgets) == 1

    def test_failure_does_not_abort_batch(self, store, make_budget):
        store.add_budget(make_budget("bud-1"))
        store.add_budget(make_budget("bud-2", name="Dining"))
        real_spend = store.current_period_spend

        def spend(budget_id):
            if budget_id == "bud-1":
                raise NotFoundError("category", "cat-groceries")
            return real_spend(budget_id)

        store.current_period_spend = spend
        result = BudgetRolloverProcessor(store).process_due(JUNE_1)

        assert [item.closed_budget_id for item in result.items] == ["bud-2"]
        assert result.failures[0].entity_id == "bud-1"
        assert store.get_budget("bud-1").rolled_over is False

    def test_owner_filter(self, store, make_budget):
        store.add_budget(make_budget("bud-1"))
        store.add_budget(make_budget("bud-2", owner_id="user-2", category_id="cat-rent"))

        result = BudgetRolloverProcessor(store).process_due(JUNE_1, owner_id="user-2")

        assert [item.owner_id for item in result.items] == ["user-2"]
        assert store.get_budget("bud-1").rolled_over is False

    def test_outcome_serializes(self, store, make_budget):
        store.add_budget(make_budget())
        payload = BudgetRolloverProcessor(store).process_due(JUNE_1).to_dict()

        item = payload["items"][0]
        assert item["action"] == CREATE_SUCCESSOR
        assert item["new_period"]["start"] == "2025-06-01T00:00:00"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
