"""
subscriptions.py

Subscription records, frequency conversion and the Thursday-to-Wednesday
pay period planner.  Raw records coming from imports or older exports are
passed through ``normalize_subscription`` once, which is where legacy
field names (``cost``, ``billingCycle``, ``paymentCard``) are migrated.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import PaymentCardRecord, SubscriptionRecord

logger = logging.getLogger(__name__)

STATUSES = ("active", "cancelled", "paused", "watchlist", "trial")
FREQUENCIES = ("daily", "weekly", "bi-weekly", "monthly", "quarterly", "semi-annually", "yearly", "variable")

FREQUENCY_ALIASES = {
    "biweekly": "bi-weekly",
    "semi-annual": "semi-annually",
    "semiannual": "semi-annually",
    "annual": "yearly",
    "annually": "yearly",
}

# Multipliers converting one charge at a given frequency into a monthly,
# yearly and weekly amount.
MONTHLY_FACTORS = {
    "monthly": 1.0,
    "variable": 1.0,
    "weekly": 4.33,
    "daily": 30.44,
    "yearly": 1 / 12,
    "quarterly": 1 / 3,
    "semi-annually": 1 / 6,
    "bi-weekly": 2.16,
}
YEARLY_FACTORS = {
    "yearly": 1.0,
    "monthly": 12.0,
    "variable": 12.0,
    "weekly": 52.0,
    "daily": 365.25,
    "quarterly": 4.0,
    "semi-annually": 2.0,
    "bi-weekly": 26.0,
}
WEEKLY_FACTORS = {
    "weekly": 1.0,
    "monthly": 1 / 4.33,
    "variable": 1 / 4.33,
    "yearly": 1 / 52,
    "daily": 7.0,
    "quarterly": 1 / 13,
    "semi-annually": 1 / 26,
    "bi-weekly": 0.5,
}

PERIOD_OFFSETS = {
    "daily": pd.DateOffset(days=1),
    "weekly": pd.DateOffset(days=7),
    "bi-weekly": pd.DateOffset(days=14),
    "monthly": pd.DateOffset(months=1),
    "variable": pd.DateOffset(months=1),
    "quarterly": pd.DateOffset(months=3),
    "semi-annually": pd.DateOffset(months=6),
    "yearly": pd.DateOffset(years=1),
}

SAVINGS_REVIEW_DAYS = 60
PAY_PERIOD_START_WEEKDAY = 3  # Thursday


@dataclass(frozen=True)
class PriceChange:
    date: date
    cost: float
    description: Optional[str] = None


@dataclass(frozen=True)
class Subscription:
    id: str
    name: str
    price: float
    frequency: str = "monthly"
    next_payment: Optional[date] = None
    category: str = "Other"
    status: str = "active"
    is_active: bool = True
    subscription_type: str = "personal"  # 'personal', 'business'
    card_id: Optional[str] = None
    date_added: Optional[date] = None
    date_cancelled: Optional[date] = None
    description: str = ""
    billing_url: str = ""
    tags: tuple = ()
    watchlist_notes: Optional[str] = None
    reminder_days: int = 3
    average_price: Optional[float] = None
    upcoming_changes: tuple = ()


@dataclass(frozen=True)
class PaymentCard:
    id: str
    nickname: str
    last_four: str = "0000"
    type: str = "credit"
    issuer: str = ""
    color: str = "#3B82F6"
    is_default: bool = False
    date_added: Optional[date] = None


@dataclass(frozen=True)
class Occurrence:
    subscription_id: str
    name: str
    cost: float
    due_date: date
    category: str
    frequency: str
    status: str
    subscription_type: str


@dataclass(frozen=True)
class PayPeriodRequirement:
    id: str
    week_label: str
    start_date: date
    end_date: date
    required_amount: float
    subscriptions: List[Occurrence]


@dataclass(frozen=True)
class PayPeriodSummary:
    total_required: float
    subscription_count: int
    category_breakdown: Dict[str, float]
    status_breakdown: Dict[str, float]
    upcoming_changes: List["UpcomingPriceChange"]


@dataclass(frozen=True)
class UpcomingPriceChange:
    subscription: Subscription
    change: PriceChange
    current_cost: float
    difference: float


@dataclass(frozen=True)
class SubscriptionStatistics:
    total: int
    active: int
    cancelled: int
    watchlist: int
    by_category: Dict[str, int]
    by_frequency: Dict[str, int]
    next_payment_dates: List[date]


@dataclass(frozen=True)
class SavingsRecommendation:
    subscription: Subscription
    reason: str
    savings: float


@dataclass(frozen=True)
class SavingsPotential:
    unused_subscriptions: List[Subscription]
    potential_monthly_savings: float
    potential_yearly_savings: float
    recommendations: List[SavingsRecommendation] = field(default_factory=list)


@dataclass(frozen=True)
class PaymentReminder:
    subscription: Subscription
    due_date: date
    days_until: int


# --- Normalization ---

def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = pd.to_datetime(str(value), errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def normalize_frequency(value) -> str:
    freq = str(value or "").strip().lower()
    freq = FREQUENCY_ALIASES.get(freq, freq)
    if freq not in FREQUENCIES:
        logger.warning("Unknown frequency %r, defaulting to monthly", value)
        return "monthly"
    return freq


def _first(raw: dict, *keys, default=None):
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return default


def normalize_subscription(raw: dict, today: Optional[date] = None) -> Subscription:
    """Build a ``Subscription`` from a loosely-typed dict, migrating legacy keys."""
    today = today or date.today()

    price = _first(raw, "price", "cost", default=0)
    try:
        price = float(str(price).replace("$", "").replace(",", ""))
    except ValueError:
        logger.warning("Invalid price %r for %r, forcing to 0", price, raw.get("name"))
        price = 0.0
    if price < 0:
        logger.warning("Negative price %r for %r, forcing to 0", price, raw.get("name"))
        price = 0.0

    status = str(_first(raw, "status", default="active")).lower()
    if status not in STATUSES:
        status = "active"
    is_active = raw.get("is_active", raw.get("isActive"))
    if is_active is None:
        is_active = status == "active"

    pricing = raw.get("variablePricing") or {}
    changes = raw.get("upcoming_changes") or pricing.get("upcomingChanges") or []
    upcoming = tuple(
        PriceChange(_parse_date(c["date"]), float(c["cost"]), c.get("description"))
        for c in changes
        if _parse_date(c.get("date")) is not None
    )

    return Subscription(
        id=str(_first(raw, "id", default=f"sub-{uuid.uuid4().hex[:12]}")),
        name=str(_first(raw, "name", default="")).strip(),
        price=price,
        frequency=normalize_frequency(_first(raw, "frequency", "billingCycle", default="monthly")),
        next_payment=_parse_date(_first(raw, "next_payment", "nextPayment")),
        category=str(_first(raw, "category", default="Other")),
        status=status,
        is_active=bool(is_active),
        subscription_type=str(_first(raw, "subscription_type", "subscriptionType", default="personal")),
        card_id=_first(raw, "card_id", "cardId", "paymentCardId", "paymentCard"),
        date_added=_parse_date(_first(raw, "date_added", "dateAdded")) or today,
        date_cancelled=_parse_date(_first(raw, "date_cancelled", "dateCancelled")),
        description=str(_first(raw, "description", default="")),
        billing_url=str(_first(raw, "billing_url", "billingUrl", default="")),
        tags=tuple(raw.get("tags") or ()),
        watchlist_notes=_first(raw, "watchlist_notes", "watchlistNotes", "notes"),
        reminder_days=int(_first(raw, "reminder_days", "reminderDays", default=3)),
        average_price=_first(raw, "average_price") or pricing.get("averagePrice"),
        upcoming_changes=upcoming,
    )


def validate_subscription_data(raw: dict) -> List[str]:
    """Return a list of human readable problems; empty when the record is usable."""
    errors = []
    if not str(raw.get("name") or "").strip():
        errors.append("Name is required")

    price = _first(raw, "price", "cost")
    try:
        if price is None or float(price) <= 0:
            errors.append("Price must be greater than 0")
    except (TypeError, ValueError):
        errors.append("Price must be greater than 0")

    if not _first(raw, "frequency", "billingCycle"):
        errors.append("Frequency is required")

    next_payment = _first(raw, "next_payment", "nextPayment")
    if not next_payment or _parse_date(next_payment) is None:
        errors.append("Valid next payment date is required")

    if not raw.get("category"):
        errors.append("Category is required")
    return errors


# --- Amount conversion ---

def _factor(table: Dict[str, float], frequency: str) -> float:
    freq = FREQUENCY_ALIASES.get(str(frequency).lower(), str(frequency).lower())
    if freq not in table:
        logger.warning("Unknown frequency %r, treating as monthly", frequency)
        freq = "monthly"
    return table[freq]


def _price(sub: Subscription) -> float:
    if sub.frequency in ("monthly", "variable") and sub.average_price:
        return float(sub.average_price)
    return sub.price


def calculate_monthly_amount(sub: Subscription) -> float:
    return _price(sub) * _factor(MONTHLY_FACTORS, sub.frequency)


def calculate_yearly_amount(sub: Subscription) -> float:
    return _price(sub) * _factor(YEARLY_FACTORS, sub.frequency)


def calculate_weekly_amount(sub: Subscription) -> float:
    return _price(sub) * _factor(WEEKLY_FACTORS, sub.frequency)


# --- Scheduling ---

def _shift(anchor: date, frequency: str, steps: int) -> date:
    offset = PERIOD_OFFSETS.get(frequency, PERIOD_OFFSETS["monthly"])
    return (pd.Timestamp(anchor) + offset * steps).date()


def calculate_next_payment_date(last_payment: date, frequency: str) -> date:
    """One billing cycle after ``last_payment``; month ends are clamped (Jan 31 -> Feb 28)."""
    return _shift(last_payment, normalize_frequency(frequency), 1)


def subscription_occurrences(sub: Subscription, start: date, end: date) -> List[date]:
    """Billing dates of ``sub`` that fall within ``[start, end]``."""
    if sub.next_payment is None:
        logger.debug("Subscription %s has no next payment date", sub.name)
        return []
    if end < start:
        return []

    anchor = sub.next_payment
    # Jump near ``start`` using the first cycle's length, then settle on the
    # last billing date before it
    cycle_days = max((_shift(anchor, sub.frequency, 1) - anchor).days, 1)
    steps = (start - anchor).days // cycle_days
    while _shift(anchor, sub.frequency, steps) >= start:
        steps -= 1
    while _shift(anchor, sub.frequency, steps + 1) < start:
        steps += 1

    dates = []
    due = _shift(anchor, sub.frequency, steps + 1)
    while due <= end:
        dates.append(due)
        steps += 1
        due = _shift(anchor, sub.frequency, steps + 1)
    return dates


def get_upcoming_subscriptions(
    subs: Iterable[Subscription], start: date, end: date, include_all_statuses: bool = True
) -> List[Occurrence]:
    if not include_all_statuses:
        subs = [s for s in subs if s.is_active and s.status == "active"]

    occurrences = [
        Occurrence(
            subscription_id=s.id,
            name=s.name,
            cost=_price(s),
            due_date=due,
            category=s.category,
            frequency=s.frequency,
            status=s.status,
            subscription_type=s.subscription_type,
        )
        for s in subs
        for due in subscription_occurrences(s, start, end)
    ]
    return sorted(occurrences, key=lambda o: o.due_date)


def current_pay_period_start(today: Optional[date] = None) -> date:
    """The Thursday that opens the Thursday-to-Wednesday period containing ``today``."""
    today = today or date.today()
    return today - timedelta(days=(today.weekday() - PAY_PERIOD_START_WEEKDAY) % 7)


def get_upcoming_pricing_changes(
    subs: Iterable[Subscription], today: Optional[date] = None
) -> List[UpcomingPriceChange]:
    today = today or date.today()
    changes = [
        UpcomingPriceChange(s, c, s.price, round(c.cost - s.price, 2))
        for s in subs
        for c in s.upcoming_changes
        if c.date > today
    ]
    return sorted(changes, key=lambda c: c.change.date)


def get_pay_period_summary(
    subs: Iterable[Subscription],
    start: date,
    end: date,
    include_all_statuses: bool = True,
    today: Optional[date] = None,
) -> PayPeriodSummary:
    subs = list(subs)
    upcoming = get_upcoming_subscriptions(subs, start, end, include_all_statuses)

    by_category: Dict[str, float] = {}
    by_status: Dict[str, float] = {}
    for o in upcoming:
        by_category[o.category] = by_category.get(o.category, 0.0) + o.cost
        by_status[o.status] = by_status.get(o.status, 0.0) + o.cost

    changes = [c for c in get_upcoming_pricing_changes(subs, today) if start <= c.change.date <= end]
    return PayPeriodSummary(
        total_required=round(sum(o.cost for o in upcoming), 2),
        subscription_count=len(upcoming),
        category_breakdown=by_category,
        status_breakdown=by_status,
        upcoming_changes=changes,
    )


def calculate_pay_period_requirements(
    subs: Iterable[Subscription],
    period_count: int = 12,
    today: Optional[date] = None,
    include_all_statuses: bool = True,
) -> List[PayPeriodRequirement]:
    subs = list(subs)
    first = current_pay_period_start(today)

    requirements = []
    for i in range(period_count):
        start = first + timedelta(days=7 * i)
        end = start + timedelta(days=6)
        upcoming = get_upcoming_subscriptions(subs, start, end, include_all_statuses)
        requirements.append(
            PayPeriodRequirement(
                id=f"period-{i}",
                week_label=f"Week {i + 1}: {start:%b} {start.day} - {end:%b} {end.day}",
                start_date=start,
                end_date=end,
                required_amount=round(sum(o.cost for o in upcoming), 2),
                subscriptions=upcoming,
            )
        )
    logger.debug(
        "Calculated %d pay periods from %s, %.2f required in total",
        period_count,
        first,
        sum(r.required_amount for r in requirements),
    )
    return requirements


def upcoming_payment_reminders(
    subs: Iterable[Subscription], today: Optional[date] = None
) -> List[PaymentReminder]:
    """Active subscriptions whose next payment falls within their reminder window."""
    today = today or date.today()
    reminders = []
    for s in subs:
        if not s.is_active or s.next_payment is None:
            continue
        days_until = (s.next_payment - today).days
        if 0 <= days_until <= s.reminder_days:
            reminders.append(PaymentReminder(s, s.next_payment, days_until))
    return sorted(reminders, key=lambda r: r.due_date)


# --- Statistics ---

def get_subscription_statistics(subs: Iterable[Subscription]) -> SubscriptionStatistics:
    subs = list(subs)
    by_category: Dict[str, int] = {}
    by_frequency: Dict[str, int] = {}
    for s in subs:
        by_category[s.category] = by_category.get(s.category, 0) + 1
        by_frequency[s.frequency] = by_frequency.get(s.frequency, 0) + 1

    return SubscriptionStatistics(
        total=len(subs),
        active=sum(1 for s in subs if s.status == "active"),
        cancelled=sum(1 for s in subs if s.status == "cancelled"),
        watchlist=sum(1 for s in subs if s.status == "watchlist"),
        by_category=by_category,
        by_frequency=by_frequency,
        next_payment_dates=[s.next_payment for s in subs if s.next_payment],
    )


def calculate_savings_potential(subs: Iterable[Subscription], today: Optional[date] = None) -> SavingsPotential:
    """Active subscriptions added more than 60 days ago are review candidates."""
    today = today or date.today()
    cutoff = today - timedelta(days=SAVINGS_REVIEW_DAYS)
    unused = [s for s in subs if s.status == "active" and s.date_added and s.date_added < cutoff]

    monthly = sum(calculate_monthly_amount(s) for s in unused)
    return SavingsPotential(
        unused_subscriptions=unused,
        potential_monthly_savings=round(monthly, 2),
        potential_yearly_savings=round(monthly * 12, 2),
        recommendations=[
            SavingsRecommendation(
                s,
                "Not reviewed in over 60 days - consider canceling or downgrading",
                round(calculate_monthly_amount(s), 2),
            )
            for s in unused
        ],
    )


def watchlist(subs: Iterable[Subscription]) -> List[Subscription]:
    return [s for s in subs if s.status == "watchlist"]


def cancel_subscription(sub: Subscription, today: Optional[date] = None) -> Subscription:
    return replace(sub, status="cancelled", is_active=False, date_cancelled=today or date.today())


# --- Persistence ---

def _subscription_from_record(r: SubscriptionRecord) -> Subscription:
    return Subscription(
        id=r.id,
        name=r.name,
        price=r.price,
        frequency=r.frequency,
        next_payment=r.next_payment,
        category=r.category,
        status=r.status,
        is_active=r.is_active,
        subscription_type=r.subscription_type,
        card_id=r.card_id,
        date_added=r.date_added,
        date_cancelled=r.date_cancelled,
        description=r.description or "",
        billing_url=r.billing_url or "",
        tags=tuple(r.tags or ()),
        watchlist_notes=r.watchlist_notes,
        reminder_days=r.reminder_days if r.reminder_days is not None else 3,
        average_price=r.average_price,
        upcoming_changes=tuple(
            PriceChange(_parse_date(c["date"]), c["cost"], c.get("description")) for c in (r.upcoming_changes or [])
        ),
    )


def _subscription_record(s: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=s.id,
        name=s.name,
        price=s.price,
        frequency=s.frequency,
        next_payment=s.next_payment,
        category=s.category,
        status=s.status,
        is_active=s.is_active,
        subscription_type=s.subscription_type,
        card_id=s.card_id,
        date_added=s.date_added,
        date_cancelled=s.date_cancelled,
        description=s.description,
        billing_url=s.billing_url,
        tags=list(s.tags),
        watchlist_notes=s.watchlist_notes,
        reminder_days=s.reminder_days,
        average_price=s.average_price,
        upcoming_changes=[
            {"date": c.date.isoformat(), "cost": c.cost, "description": c.description} for c in s.upcoming_changes
        ],
    )


def _card_from_record(r: PaymentCardRecord) -> PaymentCard:
    return PaymentCard(
        id=r.id,
        nickname=r.nickname,
        last_four=r.last_four,
        type=r.type,
        issuer=r.issuer or "",
        color=r.color,
        is_default=bool(r.is_default),
        date_added=r.date_added,
    )


def _card_record(c: PaymentCard) -> PaymentCardRecord:
    return PaymentCardRecord(
        id=c.id,
        nickname=c.nickname,
        last_four=c.last_four,
        type=c.type,
        issuer=c.issuer,
        color=c.color,
        is_default=c.is_default,
        date_added=c.date_added,
    )


class SubscriptionStore:
    """Subscriptions and payment cards kept in the database."""

    def __init__(self, db: Session):
        self.db = db

    def list_subscriptions(self) -> List[Subscription]:
        return [_subscription_from_record(r) for r in self.db.query(SubscriptionRecord).order_by(SubscriptionRecord.name)]

    def list_cards(self) -> List[PaymentCard]:
        return [_card_from_record(r) for r in self.db.query(PaymentCardRecord).order_by(PaymentCardRecord.nickname)]

    def save(self, subscriptions: Iterable[Subscription] = (), cards: Iterable[PaymentCard] = ()) -> None:
        for s in subscriptions:
            self.db.merge(_subscription_record(s))
        for c in cards:
            self.db.merge(_card_record(c))
        self._commit()

    def delete_subscription(self, subscription_id: str) -> bool:
        deleted = self.db.query(SubscriptionRecord).filter(SubscriptionRecord.id == subscription_id).delete()
        self._commit()
        return bool(deleted)

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Error saving subscriptions")
            raise
