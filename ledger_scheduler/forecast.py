"""
Spending Forecast Module
Per-category averages and linear trends over monthly expense totals
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from .errors import ValidationError

HISTORY_WINDOWS = {
    "month": relativedelta(months=6),
    "year": relativedelta(years=2),
}


@dataclass
class CategoryForecast:
    category_id: str
    totals: List[float]
    average: float
    trend: float

    @property
    def projected_next(self) -> float:
        """Next period's total if the trend holds"""
        return self.average * (1 + self.trend / 100)

    def to_dict(self) -> Dict:
        return {
            "category_id": self.category_id,
            "totals": list(self.totals),
            "average": round(self.average, 2),
            "trend": round(self.trend, 2),
            "projected_next": round(self.projected_next, 2),
        }


def history_window(mode: str, as_of: datetime) -> Tuple[datetime, datetime]:
    """
    Boundaries of the history a forecast looks back over

    Args:
        mode: "month" (6 months back) or "year" (2 years back)
        as_of: End of the window

    Returns:
        (start, end) tuple
    """
    if mode not in HISTORY_WINDOWS:
        raise ValidationError(f"Unknown forecast mode: {mode!r}")
    return as_of - HISTORY_WINDOWS[mode], as_of


def group_monthly_totals(rows: Iterable[Tuple[int, int, str, float]]) -> Dict[str, List[float]]:
    """
    Turn (year, month, category_id, total) rows into chronological series

    Rows may arrive in any order; each category's series is sorted by month.
    """
    buckets: Dict[str, Dict[Tuple[int, int], float]] = {}
    for year, month, category_id, total in rows:
        per_month = buckets.setdefault(str(category_id), {})
        per_month[(year, month)] = per_month.get((year, month), 0.0) + float(total)

    return {
        category_id: [per_month[key] for key in sorted(per_month)]
        for category_id, per_month in buckets.items()
    }


def linear_trend(totals: Sequence[float]) -> float:
    """
    OLS slope of totals against period index, as % of the mean per period

    Returns 0 for fewer than two points or a zero mean.
    """
    n = len(totals)
    if n < 2:
        return 0.0

    average = statistics.fmean(totals)
    if average == 0:
        return 0.0

    xs = range(n)
    sum_x = sum(xs)
    sum_y = sum(totals)
    sum_xy = sum(x * y for x, y in zip(xs, totals))
    sum_xx = sum(x * x for x in xs)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    return slope / average * 100


class ForecastEngine:
    """Projects category spending from historical monthly totals"""

    def forecast(self,
                 history: Dict[str, Sequence[float]],
                 period_count: Optional[int] = None) -> Dict[str, CategoryForecast]:
        """
        Average and trend for every category

        Args:
            history: category id -> chronological period totals, already
                limited to the history window
            period_count: Keep only the most recent N totals per category

        Returns:
            category id -> CategoryForecast
        """
        if period_count is not None and period_count < 1:
            raise ValidationError("period_count must be positive")

        forecasts = {}
        for category_id, totals in history.items():
            series = [float(t) for t in totals]
            if period_count is not None:
                series = series[-period_count:]
            if not series:
                continue

            forecasts[category_id] = CategoryForecast(
                category_id=category_id,
                totals=series,
                average=statistics.fmean(series),
                trend=linear_trend(series),
            )

        return forecasts

    def forecast_rows(self,
                      rows: Iterable[Tuple[int, int, str, float]],
                      period_count: Optional[int] = None) -> Dict[str, CategoryForecast]:
        """Forecast straight from (year, month, category_id, total) rows"""
        return self.forecast(group_monthly_totals(rows), period_count=period_count)
