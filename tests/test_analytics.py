from datetime import date

import numpy as np
import pytest

from analytics import (
    BASE_AMOUNTS,
    calculate_trend,
    generate_insights,
    get_budget_analysis,
    get_monthly_comparison,
    get_spending_trends,
    get_spending_velocity,
    project_next_month,
)
from financial_types import MonthlyFinancialData, Transaction, TransactionCategory


def _july(total):
    return MonthlyFinancialData(
        month=7,
        year=2025,
        transactions=(Transaction("jul-1", date(2025, 7, 10), "Rent", total, TransactionCategory.OTHER),),
    )


@pytest.mark.parametrize(
    "amounts, expected",
    [
        ([100, 100, 200, 200], "increasing"),
        ([200, 200, 100, 100], "decreasing"),
        ([100, 102], "stable"),
        ([0, 0, 5, 5], "increasing"),
        ([50], "stable"),
    ],
)
def test_calculate_trend(amounts, expected):
    assert calculate_trend(amounts) == expected


def test_project_next_month_follows_recent_trend():
    assert project_next_month([100, 200, 300]) == pytest.approx(220.0)
    assert project_next_month([300, 200, 100]) == pytest.approx(180.0)
    assert project_next_month([]) == 0.0


def test_spending_trends_without_history_uses_base_amounts():
    trends = get_spending_trends({}, months=6, today=date(2025, 8, 31), rng=np.random.default_rng(1))

    assert len(trends) == 5
    for trend in trends:
        assert len(trend.periods) == 6
        assert all(p.synthetic for p in trend.periods)
        base = BASE_AMOUNTS[trend.category]
        assert all(base * 0.85 - 0.01 <= p.amount <= base * 1.15 + 0.01 for p in trend.periods)
    assert [t.avg_monthly_spend for t in trends] == sorted((t.avg_monthly_spend for t in trends), reverse=True)


def test_spending_trends_uses_recorded_month(sample_month):
    trends = get_spending_trends({sample_month.key: sample_month}, months=3, today=date(2025, 8, 31))

    transport = next(t for t in trends if t.category == "transportation")
    last = transport.periods[-1]
    assert (last.month, last.year) == (8, 2025)
    assert last.amount == 1208.00
    assert not last.synthetic
    assert transport.periods[0].synthetic


def test_spending_trends_are_reproducible(sample_month):
    months = {sample_month.key: sample_month}
    first = get_spending_trends(months, today=date(2025, 8, 31), rng=np.random.default_rng(7))
    second = get_spending_trends(months, today=date(2025, 8, 31), rng=np.random.default_rng(7))
    assert first == second


def test_budget_analysis_mid_month(sample_month):
    analysis = get_budget_analysis(
        sample_month, {"transportation": 1000.0, "other": 1000.0}, today=date(2025, 8, 15)
    )
    by_category = {a.category: a for a in analysis}

    transport = by_category["transportation"]
    assert transport.actual_amount == 1208.00
    assert transport.variance == -208.00
    assert transport.status == "over"
    assert transport.days_remaining == 16
    assert transport.projected_month_end == round(1208.00 / 15 * 31, 2)

    assert by_category["other"].status == "under"


def test_budget_analysis_after_month_end_projects_actuals(sample_month):
    [a] = get_budget_analysis(sample_month, {"utilities": 950.0}, today=date(2025, 9, 10))
    assert a.projected_month_end == 950.00
    assert a.days_remaining == 0
    assert a.status == "on_track"


def test_monthly_comparison_with_stored_previous(sample_month):
    comparison = get_monthly_comparison(sample_month, _july(3000.0))

    assert not comparison.synthetic_previous
    assert comparison.total_change == round(3688.21 - 3000.0, 2)
    assert comparison.total_change_percent == round((3688.21 - 3000.0) / 3000.0 * 100, 2)
    other = next(c for c in comparison.category_changes if c.category == "other")
    assert other.change == round(171.14 - 3000.0, 2)


def test_monthly_comparison_synthesizes_previous(sample_month):
    comparison = get_monthly_comparison(sample_month, rng=np.random.default_rng(3))

    assert comparison.synthetic_previous
    assert (comparison.previous_month.month, comparison.previous_month.year) == (7, 2025)
    assert 3688.21 * 0.85 - 0.01 <= comparison.previous_month.total_spending <= 3688.21 * 1.15 + 0.01


def test_spending_velocity(sample_month):
    velocity = get_spending_velocity(sample_month, today=date(2025, 8, 31))
    assert velocity.current_pace == round(3688.21 / 31, 2)
    assert velocity.projected_month_end == 3688.21
    assert velocity.days_remaining == 0
    assert velocity.comparison == "on_pace"


def test_spending_velocity_against_previous_month(sample_month):
    assert get_spending_velocity(sample_month, date(2025, 8, 31), _july(2000.0)).comparison == "ahead"
    assert get_spending_velocity(sample_month, date(2025, 8, 31), _july(6000.0)).comparison == "behind"


def test_generate_insights(sample_month):
    insights = generate_insights(
        sample_month, previous=_july(3600.0), today=date(2025, 8, 31), rng=np.random.default_rng(0)
    )

    titles = [i.title for i in insights]
    assert "High Transportation Spending" in titles
    assert "Debt Payment Progress" in titles
    assert "Spending Increase Alert" not in titles
    assert insights[0].priority == "high"
    assert insights[-1].priority in ("low", "medium")


def test_generate_insights_flags_big_increase_and_inactive_subs(sample_month):
    from dataclasses import replace

    subs = tuple(replace(s, is_active=False) if s.id == "per-sub-4" else s for s in sample_month.subscriptions)
    month = replace(sample_month, subscriptions=subs)

    insights = generate_insights(month, previous=_july(1000.0), today=date(2025, 8, 31))
    by_title = {i.title: i for i in insights}

    assert by_title["Spending Increase Alert"].priority == "high"
    assert by_title["Cancel Unused Subscriptions"].impact == round(11.99 * 12, 2)
