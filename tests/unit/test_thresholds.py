"""
Test Suite: Budget threshold alerts
"""

from datetime import datetime

import pytest

from ledger_scheduler.models import NotificationPolicy
from ledger_scheduler.thresholds import (
    BudgetThresholdEvaluator,
    budget_progress,
    spend_percentage,
)

AS_OF = datetime(2025, 5, 20, 12, 0)


class TestProgress:

    def test_percentage(self):
        assert spend_percentage(500, 400) == 80.0
        assert spend_percentage(500, 750) == 150.0

    def test_zero_amount_budget(self):
        assert spend_percentage(0, 40) == 0.0

    def test_progress_is_capped_remaining_is_not(self):
        progress = budget_progress(500, 600)
        assert progress["progress"] == 100.0
        assert progress["remaining"] == -100.0


class TestEvaluate:

    @pytest.fixture
    def evaluator(self):
        return BudgetThresholdEvaluator()

    def test_alert_at_threshold(self, evaluator, make_budget):
        alert = evaluator.evaluate(make_budget(), 400.0, AS_OF)

        assert alert is not None
        assert alert.budget_id == "bud-1"
        assert alert.budget_name == "Groceries"
        assert alert.category == "Groceries"
        assert alert.spent == 400.0
        assert alert.remaining == 100.0
        assert alert.progress == 80
        assert alert.threshold == 80

    def test_no_alert_below_threshold(self, evaluator, make_budget):
        assert evaluator.evaluate(make_budget(), 399.99, AS_OF) is None

    def test_disabled_notifications(self, evaluator, make_budget):
        budget = make_budget(notifications=NotificationPolicy(enabled=False, threshold=10))
        assert evaluator.evaluate(budget, 5000.0, AS_OF) is None

    def test_overspend(self, evaluator, make_budget):
        alert = evaluator.evaluate(make_budget(), 650.0, AS_OF)

        assert alert.progress == 100
        assert alert.raw_progress == pytest.approx(130.0)
        assert alert.remaining == 0.0

    def test_zero_threshold_always_alerts(self, evaluator, make_budget):
        budget = make_budget(notifications=NotificationPolicy(enabled=True, threshold=0))
        assert evaluator.evaluate(budget, 0.0, AS_OF) is not None

    def test_period_bounds_follow_as_of(self, evaluator, make_budget):
        alert = evaluator.evaluate(make_budget(period="weekly"), 450.0, AS_OF)

        assert alert.period.start == datetime(2025, 5, 18)
        assert alert.period.end == datetime(2025, 5, 24, 23, 59, 59, 999000)

    def test_uncategorized_budget(self, evaluator, make_budget):
        budget = make_budget(category_id=None, category_name=None)
        assert evaluator.evaluate(budget, 450.0, AS_OF).category == "Uncategorized"

    def test_payload(self, evaluator, make_budget):
        payload = evaluator.evaluate(make_budget(), 412.345, AS_OF).to_dict()

        assert payload["kind"] == "budget_alert"
        assert payload["spent"] == 412.35
        assert payload["period_start"] == "2025-05-01T00:00:00"

    def test_uses_clock(self, make_budget, clock):
        alert = BudgetThresholdEvaluator(clock=clock).evaluate(make_budget(), 450.0)
        assert alert.period.start == datetime(2025, 1, 1)


class TestCheckAll:

    def test_collects_alerts_and_failures(self, make_budget):
        budgets = [make_budget("bud-1"), make_budget("bud-2"), make_budget("bud-3")]
        spend = {"bud-1": 450.0, "bud-3": 10.0}

        def lookup(budget_id):
            return spend[budget_id]

        result = BudgetThresholdEvaluator().check_all(budgets, lookup, AS_OF)

        assert [alert.budget_id for alert in result.items] == ["bud-1"]
        assert result.skipped == ["bud-3"]
        assert [failure.entity_id for failure in result.failures] == ["bud-2"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
