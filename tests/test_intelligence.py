from datetime import date, datetime, time

import pytest

from intelligence import (
    AnomalyHistory,
    analyze_spending_patterns,
    calculate_confidence,
    calculate_severity,
    detect_anomalies,
    detect_duplicate_charges,
    detect_unusual_patterns,
    generate_cash_flow_projections,
    generate_insights,
    transactions_in_timeframe,
)
from financial_types import MonthlyFinancialData, Transaction, TransactionCategory
from subscriptions import Subscription

NOW = datetime(2025, 8, 31, 23, 0)


def _txn(tid, day, amount, category=TransactionCategory.DINING, name=None, at=None, month=1):
    return Transaction(
        id=tid,
        date=date(2025, month, day),
        name=name or tid,
        amount=amount,
        category=category,
        time=at,
    )


@pytest.mark.parametrize(
    "amounts, expected",
    [
        ([100, 200, 400], "increasing"),
        ([400, 200, 100], "decreasing"),
        ([100, 300, 100, 300], "volatile"),
        ([100, 105, 100], "stable"),
    ],
)
def test_pattern_trend_from_weekly_totals(amounts, expected):
    txns = [_txn(f"t{i}", 8 + 7 * i, amount) for i, amount in enumerate(amounts)]
    pattern = analyze_spending_patterns(txns)["dining"]
    assert pattern.trend == expected


def test_pattern_trend_across_new_year():
    weeks = [date(2024, 12, 11), date(2024, 12, 18), date(2024, 12, 25), date(2025, 1, 1), date(2025, 1, 8)]
    txns = [
        Transaction(f"w{i}", d, "Groceries", amount, TransactionCategory.DINING)
        for i, (d, amount) in enumerate(zip(weeks, [100.0, 150.0, 200.0, 250.0, 300.0]))
    ]
    pattern = analyze_spending_patterns(txns)["dining"]

    assert pattern.trend == "increasing"
    assert pattern.average_change == pytest.approx((0.5 + 1 / 3 + 0.25 + 0.2) / 4)


def test_same_week_number_in_different_years_is_not_merged():
    txns = [
        Transaction("a", date(2024, 1, 10), "Gym", 100.0, TransactionCategory.DINING),
        Transaction("b", date(2025, 1, 8), "Gym", 100.0, TransactionCategory.DINING),
        Transaction("c", date(2025, 1, 15), "Gym", 100.0, TransactionCategory.DINING),
    ]
    pattern = analyze_spending_patterns(txns)["dining"]
    assert pattern.trend == "stable"
    assert pattern.average_change == 0.0


def test_pattern_averages():
    txns = [_txn("a", 1, 10.0), _txn("b", 11, 30.0)]
    pattern = analyze_spending_patterns(txns)["dining"]

    assert pattern.average_daily == pytest.approx(4.0)
    assert pattern.average_weekly == pytest.approx(28.0)
    assert pattern.average_monthly == pytest.approx(120.0)
    assert pattern.standard_deviation == pytest.approx(10.0)
    assert pattern.trend == "stable"
    assert pattern.seasonality is None


def test_pattern_seasonality_needs_three_months():
    txns = [_txn("jan", 5, 100.0, month=1), _txn("feb", 5, 100.0, month=2), _txn("mar", 5, 400.0, month=3)]
    seasonality = analyze_spending_patterns(txns)["dining"].seasonality

    assert seasonality.pattern == "seasonal"
    assert seasonality.high_months == [3]
    assert seasonality.low_months == [1, 2]


def test_severity_and_confidence():
    assert calculate_severity(150, 100, 10) == "critical"
    assert calculate_severity(135, 100, 10) == "high"
    assert calculate_severity(125, 100, 10) == "medium"
    assert calculate_severity(105, 100, 10) == "low"
    assert calculate_confidence(2.0, 10) == 65
    assert calculate_confidence(50.0, 40) == 50


def test_timeframe_window(sample_month):
    txns = sample_month.all_transactions
    assert len(transactions_in_timeframe(txns, "month", NOW)) == 40
    week = transactions_in_timeframe(txns, "week", NOW)
    assert {t.date for t in week} <= {date(2025, 8, d) for d in range(24, 32)}
    with pytest.raises(ValueError):
        transactions_in_timeframe(txns, "year", NOW)


def test_detect_anomalies_on_sample_month(sample_month):
    anomalies = detect_anomalies(sample_month.all_transactions, "month", NOW)
    by_type = {}
    for a in anomalies:
        by_type.setdefault(a.type, []).append(a)

    spikes = {a.transaction.id for a in by_type["spending_spike"]}
    assert spikes == {"cc-1", "bus-sub-1"}

    [duplicate] = by_type["duplicate_charge"]
    assert duplicate.transaction.id == "util-2"
    assert duplicate.metadata["original_transaction_id"] == "util-1"
    assert duplicate.severity == "high"
    assert duplicate.confidence == 85

    [velocity] = by_type["velocity_change"]
    assert velocity.metadata["max_velocity"] == 5
    assert velocity.severity == "medium"

    assert "unusual_pattern" not in by_type
    assert "category_surge" not in by_type


def test_duplicates_outside_window_are_ignored():
    txns = [
        _txn("a", 1, 20.0, name="Gym"),
        _txn("b", 4, 20.0, name="Gym"),
        _txn("c", 10, 20.0, name="Gym"),
        _txn("d", 12, 20.0, name="Gym"),
    ]
    flagged = detect_duplicate_charges(txns, NOW)
    assert [a.transaction.id for a in flagged] == ["d"]


def test_unusual_pattern_only_counts_timed_transactions():
    late = [_txn(f"n{i}", 2 + i, 10.0, at=time(2, 30)) for i in range(4)]
    untimed = [_txn(f"u{i}", 2 + i, 10.0) for i in range(10)]

    [alert] = detect_unusual_patterns(late + untimed, NOW)
    assert alert.metadata["transaction_count"] == 4
    assert detect_unusual_patterns(late[:3] + untimed, NOW) == []


def test_category_surge_in_current_week():
    history = [_txn(f"h{i}", 1 + i, 10.0, month=7) for i in range(0, 30, 3)]
    recent = [_txn("r1", 28, 60.0, month=8), _txn("r2", 29, 60.0, month=8)]

    anomalies = detect_anomalies(history + recent, "week", NOW)
    [surge] = [a for a in anomalies if a.type == "category_surge"]

    assert surge.category == "dining"
    assert surge.severity == "high"
    assert surge.confidence == 80


def test_anomaly_history_keeps_latest(db, sample_month):
    history = AnomalyHistory(db, limit=3)
    anomalies = detect_anomalies(sample_month.all_transactions, "month", NOW, history=history)
    assert len(anomalies) == 4

    stored = history.all()
    assert [a.id for a in stored] == [a.id for a in anomalies[-3:]]
    assert history.last_analysis_time() == NOW

    history.clear()
    assert history.all() == []
    assert history.last_analysis_time() is None


def test_cash_flow_projection(sample_month):
    projections = generate_cash_flow_projections(sample_month, days=40, start=date(2025, 8, 31))

    assert len(projections) == 40
    first = projections[0]
    assert first.date == date(2025, 9, 1)
    assert first.projected_balance == pytest.approx(-3688.21 / 30, abs=0.01)
    assert first.confidence == 98.5
    assert first.factors.seasonal_adjustment == 1.0
    assert projections[-1].confidence == 50
    assert all(p.lower_bound <= p.projected_balance <= p.upper_bound for p in projections)


def test_cash_flow_applies_holiday_adjustment(sample_month):
    [nov_first] = generate_cash_flow_projections(sample_month, days=1, start=date(2025, 10, 31))
    assert nov_first.factors.seasonal_adjustment == 1.3
    assert nov_first.projected_balance == pytest.approx(-3688.21 / 30 * 1.3, abs=0.01)


def test_generate_insights_subscription_and_anomaly_alert(sample_month):
    subs = [
        Subscription("s1", "Old Gym", 40.0, date_added=date(2025, 1, 1)),
        Subscription("s2", "New App", 5.0, date_added=date(2025, 8, 20)),
    ]
    insights = generate_insights(sample_month, subscriptions=subs, now=NOW)

    [optimization] = [i for i in insights if i.type == "optimization"]
    assert optimization.category == "subscriptions"
    assert optimization.impact == 40.0
    [alert] = [i for i in insights if i.category == "security"]
    assert alert.priority == "high"
    assert insights[0].priority == "high"


def test_generate_insights_achievement_for_decreasing_category():
    txns = [_txn(f"t{i}", 8 + 7 * i, amount) for i, amount in enumerate([400, 200, 100])]
    month = MonthlyFinancialData(month=1, year=2025, transactions=tuple(txns))
    insights = generate_insights(month, now=datetime(2025, 1, 31), anomalies=[])

    [achievement] = [i for i in insights if i.type == "achievement"]
    assert achievement.category == "dining"
    assert "50%" in achievement.description
