import logging
from datetime import date

import pytest

from subscriptions import (
    PriceChange,
    Subscription,
    SubscriptionStore,
    PaymentCard,
    calculate_monthly_amount,
    calculate_next_payment_date,
    calculate_pay_period_requirements,
    calculate_savings_potential,
    calculate_weekly_amount,
    calculate_yearly_amount,
    cancel_subscription,
    current_pay_period_start,
    get_pay_period_summary,
    get_subscription_statistics,
    get_upcoming_pricing_changes,
    normalize_subscription,
    subscription_occurrences,
    upcoming_payment_reminders,
    validate_subscription_data,
    watchlist,
)

TODAY = date(2025, 8, 31)  # a Sunday


def _sub(sid="s1", price=10.0, frequency="monthly", next_payment=date(2025, 9, 2), **kwargs):
    return Subscription(id=sid, name=kwargs.pop("name", sid), price=price, frequency=frequency,
                        next_payment=next_payment, **kwargs)


@pytest.mark.parametrize(
    "frequency, price, monthly, yearly",
    [
        ("monthly", 10.0, 10.0, 120.0),
        ("weekly", 10.0, 43.3, 520.0),
        ("yearly", 120.0, 10.0, 120.0),
        ("quarterly", 30.0, 10.0, 120.0),
        ("bi-weekly", 10.0, 21.6, 260.0),
    ],
)
def test_frequency_conversion(frequency, price, monthly, yearly):
    sub = _sub(price=price, frequency=frequency)
    assert calculate_monthly_amount(sub) == pytest.approx(monthly)
    assert calculate_yearly_amount(sub) == pytest.approx(yearly)


def test_weekly_amount():
    assert calculate_weekly_amount(_sub(price=52.0, frequency="yearly")) == pytest.approx(1.0)
    assert calculate_weekly_amount(_sub(price=2.0, frequency="daily")) == pytest.approx(14.0)


def test_variable_pricing_uses_average():
    sub = _sub(price=10.0, frequency="variable", average_price=14.0)
    assert calculate_monthly_amount(sub) == pytest.approx(14.0)


def test_unknown_frequency_falls_back_to_monthly(caplog):
    with caplog.at_level(logging.WARNING, logger="subscriptions"):
        sub = normalize_subscription({"name": "Gym", "price": 25, "frequency": "fortnightly"})
    assert sub.frequency == "monthly"
    assert "fortnightly" in caplog.text


def test_next_payment_date_clamps_month_end():
    assert calculate_next_payment_date(date(2025, 1, 31), "monthly") == date(2025, 2, 28)
    assert calculate_next_payment_date(date(2025, 1, 15), "quarterly") == date(2025, 4, 15)
    assert calculate_next_payment_date(date(2024, 2, 29), "yearly") == date(2025, 2, 28)
    assert calculate_next_payment_date(date(2025, 1, 15), "weekly") == date(2025, 1, 22)


def test_normalize_migrates_legacy_fields():
    sub = normalize_subscription(
        {
            "name": " Netflix ",
            "cost": "$15.99",
            "billingCycle": "Monthly",
            "paymentCard": "card-1",
            "nextPayment": "2025-09-01",
            "variablePricing": {"upcomingChanges": [{"date": "2025-10-01", "cost": 17.99}]},
        },
        today=TODAY,
    )

    assert sub.name == "Netflix"
    assert sub.price == 15.99
    assert sub.frequency == "monthly"
    assert sub.card_id == "card-1"
    assert sub.next_payment == date(2025, 9, 1)
    assert sub.date_added == TODAY
    assert sub.status == "active" and sub.is_active
    assert sub.upcoming_changes == (PriceChange(date(2025, 10, 1), 17.99),)


def test_normalize_forces_negative_price_to_zero():
    assert normalize_subscription({"name": "Odd", "price": -4}).price == 0.0


def test_validate_subscription_data():
    assert len(validate_subscription_data({})) == 5
    assert validate_subscription_data(
        {"name": "Netflix", "price": 15.99, "frequency": "monthly", "nextPayment": "2025-09-01", "category": "Video"}
    ) == []
    errors = validate_subscription_data(
        {"name": "Netflix", "price": 0, "frequency": "monthly", "nextPayment": "soon", "category": "Video"}
    )
    assert errors == ["Price must be greater than 0", "Valid next payment date is required"]


def test_current_pay_period_start_is_thursday():
    assert current_pay_period_start(TODAY) == date(2025, 8, 28)
    assert current_pay_period_start(date(2025, 8, 28)) == date(2025, 8, 28)
    assert current_pay_period_start(date(2025, 9, 3)) == date(2025, 8, 28)
    assert current_pay_period_start(date(2025, 9, 4)) == date(2025, 9, 4)


def test_subscription_occurrences_look_back_and_forward():
    sub = _sub(frequency="weekly", next_payment=date(2025, 9, 1))
    assert subscription_occurrences(sub, date(2025, 8, 25), date(2025, 9, 14)) == [
        date(2025, 8, 25),
        date(2025, 9, 1),
        date(2025, 9, 8),
    ]
    assert subscription_occurrences(_sub(next_payment=None), date(2025, 1, 1), date(2025, 12, 31)) == []


def test_subscription_occurrences_far_from_next_payment():
    sub = _sub(next_payment=date(2025, 1, 31))
    assert subscription_occurrences(sub, date(2030, 2, 1), date(2030, 3, 31)) == [date(2030, 2, 28), date(2030, 3, 31)]
    assert subscription_occurrences(sub, date(2020, 4, 1), date(2020, 4, 30)) == [date(2020, 4, 30)]

    daily = _sub(frequency="daily", next_payment=date(2025, 1, 1))
    assert subscription_occurrences(daily, date(2025, 6, 1), date(2025, 6, 3)) == [
        date(2025, 6, 1),
        date(2025, 6, 2),
        date(2025, 6, 3),
    ]


def test_daily_subscription_fills_every_pay_period():
    daily = _sub(price=3.0, frequency="daily", next_payment=date(2025, 9, 1))
    periods = calculate_pay_period_requirements([daily], today=TODAY)

    assert [len(p.subscriptions) for p in periods] == [7] * 12
    assert all(p.required_amount == 21.0 for p in periods)


def test_pay_period_requirements():
    subs = [_sub("monthly", 10.0, "monthly", date(2025, 9, 2)), _sub("weekly", 2.5, "weekly", date(2025, 9, 5))]
    periods = calculate_pay_period_requirements(subs, period_count=6, today=TODAY)

    assert len(periods) == 6
    first = periods[0]
    assert first.week_label == "Week 1: Aug 28 - Sep 3"
    assert (first.start_date, first.end_date) == (date(2025, 8, 28), date(2025, 9, 3))
    # Aug 29 (weekly) and Sep 2 (monthly)
    assert first.required_amount == 12.5
    assert [p.required_amount for p in periods[1:]] == [2.5, 2.5, 2.5, 2.5, 12.5]


def test_pay_period_can_exclude_inactive():
    subs = [_sub("a"), _sub("b", status="cancelled", is_active=False)]
    period = calculate_pay_period_requirements(subs, 1, TODAY, include_all_statuses=False)[0]
    assert [o.subscription_id for o in period.subscriptions] == ["a"]


def test_pay_period_summary_and_pricing_changes():
    change = PriceChange(date(2025, 9, 1), 12.0, "price rise")
    subs = [_sub("a", category="Video", upcoming_changes=(change,)), _sub("b", price=5.0, category="Music")]

    summary = get_pay_period_summary(subs, date(2025, 8, 28), date(2025, 9, 3), today=TODAY)
    assert summary.total_required == 15.0
    assert summary.subscription_count == 2
    assert summary.category_breakdown == {"Video": 10.0, "Music": 5.0}
    assert summary.status_breakdown == {"active": 15.0}
    [upcoming] = summary.upcoming_changes
    assert upcoming.difference == 2.0

    assert get_upcoming_pricing_changes(subs, today=date(2025, 9, 2)) == []


def test_statistics_and_watchlist():
    subs = [
        _sub("a", category="Video"),
        _sub("b", category="Video", frequency="yearly", status="cancelled", is_active=False),
        _sub("c", category="Music", status="watchlist", is_active=False, next_payment=None),
    ]
    stats = get_subscription_statistics(subs)

    assert (stats.total, stats.active, stats.cancelled, stats.watchlist) == (3, 1, 1, 1)
    assert stats.by_category == {"Video": 2, "Music": 1}
    assert stats.by_frequency == {"monthly": 2, "yearly": 1}
    assert len(stats.next_payment_dates) == 2
    assert [s.id for s in watchlist(subs)] == ["c"]


def test_savings_potential():
    subs = [
        _sub("old", price=10.0, date_added=date(2025, 5, 1)),
        _sub("new", price=99.0, date_added=date(2025, 8, 1)),
        _sub("gone", price=50.0, date_added=date(2024, 1, 1), status="cancelled", is_active=False),
    ]
    potential = calculate_savings_potential(subs, TODAY)

    assert [s.id for s in potential.unused_subscriptions] == ["old"]
    assert potential.potential_monthly_savings == 10.0
    assert potential.potential_yearly_savings == 120.0
    assert potential.recommendations[0].savings == 10.0


def test_payment_reminders():
    subs = [
        _sub("soon", next_payment=date(2025, 9, 2)),
        _sub("later", next_payment=date(2025, 9, 20)),
        _sub("off", next_payment=date(2025, 9, 1), is_active=False),
    ]
    [reminder] = upcoming_payment_reminders(subs, TODAY)
    assert reminder.subscription.id == "soon"
    assert reminder.days_until == 2


def test_cancel_subscription():
    cancelled = cancel_subscription(_sub(), TODAY)
    assert cancelled.status == "cancelled"
    assert not cancelled.is_active
    assert cancelled.date_cancelled == TODAY


def test_store_round_trip(db):
    store = SubscriptionStore(db)
    change = PriceChange(date(2025, 10, 1), 12.0)
    store.save(
        [_sub("a", name="Netflix", tags=("video",), upcoming_changes=(change,))],
        [PaymentCard("card-1", "Visa")],
    )

    [sub] = store.list_subscriptions()
    assert sub.name == "Netflix"
    assert sub.tags == ("video",)
    assert sub.upcoming_changes == (change,)
    assert store.list_cards()[0].last_four == "0000"

    assert store.delete_subscription("a")
    assert store.list_subscriptions() == []
