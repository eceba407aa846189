"""
analytics.py
------------

Month-level analytics on top of the aggregated data: spending trends per
bucket, budget tracking, month-over-month comparison, spending velocity and
rule-based insights.

History that has not been recorded yet is filled with synthetic values drawn
from a seeded generator around the bucket's typical amount, so that trends
and comparisons can still be shown for a brand new account.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Mapping, Optional

import numpy as np

from config import RANDOM_SEED
from financial_service import month_key, previous_month_of
from financial_types import CategoryBreakdown, MonthlyFinancialData

logger = logging.getLogger(__name__)

TREND_BUCKETS = ["transportation", "debt_and_credit", "utilities", "subscriptions", "other"]

# Typical monthly amounts, used when no month has been recorded at all
BASE_AMOUNTS = {
    "transportation": 1208.00,
    "debt_and_credit": 1013.73,
    "utilities": 950.00,
    "subscriptions": 313.37,
    "other": 642.29,
}

PRIORITY_WEIGHT = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class TrendPeriod:
    month: int
    year: int
    amount: float
    change: float  # percent change from the previous period
    synthetic: bool = False


@dataclass(frozen=True)
class SpendingTrend:
    category: str
    periods: List[TrendPeriod]
    trend: str  # 'increasing', 'decreasing', 'stable'
    avg_monthly_spend: float
    projection: float


@dataclass(frozen=True)
class BudgetAnalysis:
    category: str
    budget_amount: float
    actual_amount: float
    variance: float  # positive = under budget
    variance_percent: float
    status: str  # 'under', 'over', 'on_track'
    days_remaining: int
    projected_month_end: float


@dataclass(frozen=True)
class FinancialInsight:
    type: str  # 'warning', 'tip', 'achievement'
    title: str
    description: str
    impact: float
    priority: str  # 'high', 'medium', 'low'
    category: Optional[str] = None


@dataclass(frozen=True)
class MonthSnapshot:
    month: int
    year: int
    total_spending: float
    categories: List[CategoryBreakdown] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryChange:
    category: str
    change: float
    change_percent: float


@dataclass(frozen=True)
class MonthlyComparison:
    current_month: MonthSnapshot
    previous_month: MonthSnapshot
    total_change: float
    total_change_percent: float
    category_changes: List[CategoryChange]
    synthetic_previous: bool = False


@dataclass(frozen=True)
class SpendingVelocity:
    current_pace: float
    projected_month_end: float
    comparison: str  # 'ahead', 'behind', 'on_pace'
    days_remaining: int


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng(RANDOM_SEED)


def bucket_amounts(data: MonthlyFinancialData) -> Dict[str, float]:
    named = data.transportation_costs + data.debt_total + data.utility_costs + data.subscription_total
    return {
        "transportation": data.transportation_costs,
        "debt_and_credit": data.debt_total,
        "utilities": data.utility_costs,
        "subscriptions": data.subscription_total,
        "other": round(data.total_spending - named, 2),
    }


def calculate_trend(amounts: List[float]) -> str:
    """Second-half average against first-half average, +/-5% counts as a move."""
    if len(amounts) < 2:
        return "stable"

    mid = len(amounts) // 2
    first_avg = sum(amounts[:mid]) / mid
    second_avg = sum(amounts[mid:]) / (len(amounts) - mid)
    if first_avg == 0:
        return "increasing" if second_avg > 0 else "stable"

    change = (second_avg - first_avg) / first_avg * 100
    if change > 5:
        return "increasing"
    if change < -5:
        return "decreasing"
    return "stable"


def project_next_month(amounts: List[float]) -> float:
    recent = amounts[-3:]
    if not recent:
        return 0.0
    avg = sum(recent) / len(recent)
    trend = calculate_trend(recent)
    if trend == "increasing":
        return avg * 1.1
    if trend == "decreasing":
        return avg * 0.9
    return avg


def trend_percentage(periods: List[TrendPeriod]) -> float:
    if len(periods) < 2:
        return 0.0
    first, last = periods[0].amount, periods[-1].amount
    return (last - first) / first * 100 if first > 0 else 0.0


def _trailing_months(count: int, today: date) -> List[tuple]:
    months = []
    month, year = today.month, today.year
    for _ in range(count):
        months.append((month, year))
        month, year = previous_month_of(month, year)
    return list(reversed(months))


def get_spending_trends(
    months_data: Mapping[str, MonthlyFinancialData],
    months: int = 6,
    today: Optional[date] = None,
    rng: Optional[np.random.Generator] = None,
) -> List[SpendingTrend]:
    today = today or date.today()
    rng = _rng(rng)

    recorded = [bucket_amounts(d) for d in months_data.values()]
    trends = []
    for bucket in TREND_BUCKETS:
        if recorded:
            base = sum(r[bucket] for r in recorded) / len(recorded)
        else:
            base = BASE_AMOUNTS[bucket]

        periods: List[TrendPeriod] = []
        for month, year in _trailing_months(months, today):
            data = months_data.get(month_key(month, year))
            if data is not None:
                amount, synthetic = bucket_amounts(data)[bucket], False
            else:
                amount, synthetic = base * (1 + rng.uniform(-0.15, 0.15)), True

            change = 0.0
            if periods and periods[-1].amount > 0:
                change = (amount - periods[-1].amount) / periods[-1].amount * 100
            periods.append(TrendPeriod(month, year, round(amount, 2), round(change, 2), synthetic))

        amounts = [p.amount for p in periods]
        trends.append(
            SpendingTrend(
                category=bucket,
                periods=periods,
                trend=calculate_trend(amounts),
                avg_monthly_spend=round(sum(amounts) / len(amounts), 2) if amounts else 0.0,
                projection=round(project_next_month(amounts), 2),
            )
        )

    return sorted(trends, key=lambda t: t.avg_monthly_spend, reverse=True)


def _elapsed_days(data: MonthlyFinancialData, today: date) -> int:
    """Days of the month already lived through as of ``today``."""
    if (today.year, today.month) == (data.year, data.month):
        return min(today.day, data.days_in_month)
    if (today.year, today.month) > (data.year, data.month):
        return data.days_in_month
    return 0


def get_budget_analysis(
    data: MonthlyFinancialData,
    budgets: Mapping[str, float],
    today: Optional[date] = None,
) -> List[BudgetAnalysis]:
    today = today or date.today()
    actuals = {c.category: c.amount for c in data.categories}
    days_in_month = data.days_in_month
    elapsed = _elapsed_days(data, today)

    analysis = []
    for category, budget_amount in budgets.items():
        actual = actuals.get(category, 0.0)
        variance = budget_amount - actual
        variance_percent = variance / budget_amount * 100 if budget_amount > 0 else 0.0
        projected = actual / max(elapsed, 1) * days_in_month

        if projected > budget_amount * 1.1:
            status = "over"
        elif projected < budget_amount * 0.9:
            status = "under"
        else:
            status = "on_track"

        analysis.append(
            BudgetAnalysis(
                category=category,
                budget_amount=budget_amount,
                actual_amount=actual,
                variance=round(variance, 2),
                variance_percent=round(variance_percent, 2),
                status=status,
                days_remaining=days_in_month - elapsed,
                projected_month_end=round(projected, 2),
            )
        )
    return analysis


def _synthetic_previous(data: MonthlyFinancialData, rng: np.random.Generator) -> MonthSnapshot:
    month, year = previous_month_of(data.month, data.year)
    categories = [
        dataclasses.replace(c, amount=round(c.amount * rng.uniform(0.8, 1.2), 2)) for c in data.categories
    ]
    return MonthSnapshot(month, year, round(data.total_spending * rng.uniform(0.85, 1.15), 2), categories)


def get_monthly_comparison(
    data: MonthlyFinancialData,
    previous: Optional[MonthlyFinancialData] = None,
    rng: Optional[np.random.Generator] = None,
) -> MonthlyComparison:
    current = MonthSnapshot(data.month, data.year, data.total_spending, data.categories)
    if previous is not None:
        prev = MonthSnapshot(previous.month, previous.year, previous.total_spending, previous.categories)
    else:
        prev = _synthetic_previous(data, _rng(rng))

    total_change = current.total_spending - prev.total_spending
    total_change_percent = total_change / prev.total_spending * 100 if prev.total_spending > 0 else 0.0

    prev_amounts = {c.category: c.amount for c in prev.categories}
    category_changes = []
    for cat in current.categories:
        prev_amount = prev_amounts.get(cat.category, 0.0)
        change = cat.amount - prev_amount
        category_changes.append(
            CategoryChange(
                category=cat.category,
                change=round(change, 2),
                change_percent=round(change / prev_amount * 100, 2) if prev_amount > 0 else 0.0,
            )
        )

    return MonthlyComparison(
        current_month=current,
        previous_month=prev,
        total_change=round(total_change, 2),
        total_change_percent=round(total_change_percent, 2),
        category_changes=category_changes,
        synthetic_previous=previous is None,
    )


def get_spending_velocity(
    data: MonthlyFinancialData,
    today: Optional[date] = None,
    previous: Optional[MonthlyFinancialData] = None,
) -> SpendingVelocity:
    """Daily spending pace and where it lands the month, compared to last month."""
    today = today or date.today()
    days_in_month = data.days_in_month
    elapsed = max(_elapsed_days(data, today), 1)

    current_pace = data.total_spending / elapsed
    projected = current_pace * days_in_month

    comparison = "on_pace"
    if previous is not None and previous.total_spending > 0:
        variance = (projected / previous.total_spending - 1) * 100
        if variance > 10:
            comparison = "ahead"
        elif variance < -10:
            comparison = "behind"

    return SpendingVelocity(
        current_pace=round(current_pace, 2),
        projected_month_end=round(projected, 2),
        comparison=comparison,
        days_remaining=days_in_month - min(elapsed, days_in_month),
    )


def generate_insights(
    data: MonthlyFinancialData,
    previous: Optional[MonthlyFinancialData] = None,
    months_data: Optional[Mapping[str, MonthlyFinancialData]] = None,
    today: Optional[date] = None,
    rng: Optional[np.random.Generator] = None,
) -> List[FinancialInsight]:
    rng = _rng(rng)
    insights: List[FinancialInsight] = []

    categories = data.categories
    if categories:
        top = max(categories, key=lambda c: c.amount)
        if top.amount > 1000:
            insights.append(
                FinancialInsight(
                    type="warning",
                    title=f"High {top.display_name} Spending",
                    description=f"Your {top.display_name.lower()} spending is ${top.amount:,.2f} this month.",
                    impact=round(top.amount * 0.1, 2),
                    category=top.category,
                    priority="high",
                )
            )

    inactive = [s for s in data.subscriptions if not s.is_active]
    if inactive:
        savings = sum(s.amount for s in inactive)
        insights.append(
            FinancialInsight(
                type="tip",
                title="Cancel Unused Subscriptions",
                description=(
                    f"You have {len(inactive)} inactive subscriptions that could save you "
                    f"${savings:,.2f} monthly."
                ),
                impact=round(savings * 12, 2),
                category="subscriptions",
                priority="medium",
            )
        )

    comparison = get_monthly_comparison(data, previous, rng)
    if comparison.total_change_percent > 20:
        insights.append(
            FinancialInsight(
                type="warning",
                title="Spending Increase Alert",
                description=(
                    f"Your total spending increased by {comparison.total_change_percent:.1f}% "
                    "compared to last month."
                ),
                impact=comparison.total_change,
                priority="high",
            )
        )

    debt_paid = data.debt_total
    if debt_paid > 0:
        insights.append(
            FinancialInsight(
                type="achievement",
                title="Debt Payment Progress",
                description=f"Great job! You paid ${debt_paid:,.2f} towards debt this month.",
                impact=debt_paid,
                category="debt",
                priority="low",
            )
        )

    trend_today = today or date(data.year, data.month, data.days_in_month)
    for trend in get_spending_trends(months_data or {data.key: data}, 3, trend_today, rng):
        if trend.trend != "increasing" or trend.avg_monthly_spend <= 100:
            continue
        change_percent = trend_percentage(trend.periods)
        if change_percent > 25:
            insights.append(
                FinancialInsight(
                    type="warning",
                    title=f"Rising {trend.category} Costs",
                    description=(
                        f"Your {trend.category} spending has increased by {change_percent:.1f}% "
                        "over the past few months."
                    ),
                    impact=round(trend.projection - trend.avg_monthly_spend, 2),
                    category=trend.category,
                    priority="medium",
                )
            )

    logger.debug("Generated %d insights for %s", len(insights), data.key)
    return sorted(insights, key=lambda i: PRIORITY_WEIGHT[i.priority], reverse=True)
