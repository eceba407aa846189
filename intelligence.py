import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import ANOMALY_HISTORY_LIMIT, DUPLICATE_WINDOW_DAYS, SPIKE_STDDEV_MULTIPLIER
from database import AnomalyRecord
from financial_service import transactions_to_df
from financial_types import MonthlyFinancialData, Transaction
from subscriptions import Subscription, calculate_savings_potential

logger = logging.getLogger(__name__)

TIMEFRAMES = ("day", "week", "month")
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class Seasonality:
    high_months: List[int]
    low_months: List[int]
    pattern: str  # 'consistent', 'seasonal'


@dataclass(frozen=True)
class SpendingPattern:
    category: str
    average_daily: float
    average_weekly: float
    average_monthly: float
    standard_deviation: float
    trend: str  # 'increasing', 'decreasing', 'stable', 'volatile'
    average_change: float = 0.0  # mean week-over-week change, as a fraction
    seasonality: Optional[Seasonality] = None
    mean_amount: float = 0.0
    sample_size: int = 0


@dataclass(frozen=True)
class AnomalyDetection:
    id: str
    type: str  # 'spending_spike', 'unusual_pattern', 'duplicate_charge', 'category_surge', 'velocity_change'
    severity: str  # 'low', 'medium', 'high', 'critical'
    confidence: int
    description: str
    recommendation: str
    detected_at: datetime
    transaction: Optional[Transaction] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    metadata: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class CashFlowFactors:
    recurring_income: float
    recurring_expenses: float
    average_variable_expenses: float
    seasonal_adjustment: float


@dataclass(frozen=True)
class CashFlowProjection:
    date: date
    projected_balance: float
    confidence: float
    upper_bound: float
    lower_bound: float
    factors: CashFlowFactors


@dataclass(frozen=True)
class IntelligenceInsight:
    id: str
    type: str  # 'optimization', 'warning', 'opportunity', 'achievement'
    category: str
    title: str
    description: str
    impact: float
    confidence: int
    priority: str
    actionable: bool
    created_at: datetime
    suggested_action: Optional[str] = None


def _label(value) -> str:
    return getattr(value, "value", value)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def population_std(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def _trend_from_weekly(totals: List[float]) -> tuple:
    if len(totals) < 2:
        return "stable", 0.0
    changes = [(cur - prev) / prev for prev, cur in zip(totals, totals[1:]) if prev]
    if not changes:
        return "stable", 0.0

    avg_change = sum(changes) / len(changes)
    if population_std(changes) > 0.3:
        return "volatile", avg_change
    if avg_change > 0.1:
        return "increasing", avg_change
    if avg_change < -0.1:
        return "decreasing", avg_change
    return "stable", avg_change


def _seasonality(group: pd.DataFrame) -> Optional[Seasonality]:
    monthly = group.groupby(group["Date"].dt.month)["AbsAmount"].sum()
    if len(monthly) < 3:
        return None
    avg = monthly.mean()
    high = [int(m) for m, total in monthly.items() if total > avg * 1.2]
    low = [int(m) for m, total in monthly.items() if total < avg * 0.8]
    return Seasonality(high, low, "seasonal" if high or low else "consistent")


def analyze_spending_patterns(transactions: Iterable[Transaction]) -> Dict[str, SpendingPattern]:
    """Per-category daily/weekly/monthly averages, spread, trend and seasonality."""
    df = transactions_to_df(transactions)
    if df.empty:
        return {}
    df["AbsAmount"] = df["Amount"].abs()

    patterns = {}
    for category, group in df.groupby("Category", sort=False):
        amounts = group["AbsAmount"].tolist()
        day_span = (group["Date"].max() - group["Date"].min()).days or 1
        daily = sum(amounts) / max(1, day_span)

        trend, avg_change = "stable", 0.0
        if len(group) >= 3:
            # Calendar weeks, ordered across year ends
            weekly = group.groupby(group["Date"].dt.to_period("W"))["AbsAmount"].sum().sort_index()
            trend, avg_change = _trend_from_weekly(weekly.tolist())

        patterns[category] = SpendingPattern(
            category=category,
            average_daily=daily,
            average_weekly=daily * 7,
            average_monthly=daily * 30,
            standard_deviation=population_std(amounts),
            trend=trend,
            average_change=avg_change,
            seasonality=_seasonality(group),
            mean_amount=sum(amounts) / len(amounts),
            sample_size=len(amounts),
        )
    return patterns


def transactions_in_timeframe(
    transactions: Iterable[Transaction], timeframe: str = "month", now: Optional[datetime] = None
) -> List[Transaction]:
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"timeframe must be one of {TIMEFRAMES}, got {timeframe!r}")
    now = now or datetime.now()
    offsets = {"day": pd.DateOffset(days=1), "week": pd.DateOffset(days=7), "month": pd.DateOffset(months=1)}
    cutoff = (pd.Timestamp(now) - offsets[timeframe]).date()
    return [t for t in transactions if cutoff <= t.date <= now.date()]


def calculate_severity(amount: float, threshold: float, std: float) -> str:
    deviation = (amount - threshold) / std if std else 0.0
    if deviation > 4:
        return "critical"
    if deviation > 3:
        return "high"
    if deviation > 2:
        return "medium"
    return "low"


def calculate_confidence(std: float, sample_size: int) -> int:
    std_factor = max(0.0, 100 - std * 10)
    sample_factor = min(100, sample_size * 5)
    return round((std_factor + sample_factor) / 2)


def detect_spending_spikes(
    recent: List[Transaction], patterns: Dict[str, SpendingPattern], detected_at: datetime
) -> List[AnomalyDetection]:
    anomalies = []
    for category, pattern in patterns.items():
        std = pattern.standard_deviation
        if std == 0:
            continue
        threshold = pattern.mean_amount + SPIKE_STDDEV_MULTIPLIER * std
        for t in recent:
            if _label(t.category) != category:
                continue
            amount = abs(t.amount)
            if amount <= threshold:
                continue
            above = (amount / pattern.mean_amount - 1) * 100 if pattern.mean_amount else 0.0
            anomalies.append(
                AnomalyDetection(
                    id=_new_id(f"spike-{t.id}"),
                    type="spending_spike",
                    severity=calculate_severity(amount, threshold, std),
                    confidence=calculate_confidence(std, len(recent)),
                    transaction=t,
                    category=category,
                    amount=amount,
                    description=f"Unusual spending of ${amount:.2f} in {category} category",
                    recommendation=(
                        f"This transaction is {above:.0f}% above your typical {category} charge. "
                        "Consider reviewing if this was planned."
                    ),
                    detected_at=detected_at,
                    metadata={"threshold": round(threshold, 2), "standard_deviation": round(std, 2)},
                )
            )
    return anomalies


def detect_duplicate_charges(recent: List[Transaction], detected_at: datetime) -> List[AnomalyDetection]:
    """Same name and amount charged again within the duplicate window."""
    anomalies = []
    seen: Dict[tuple, List[Transaction]] = {}
    for t in sorted(recent, key=lambda t: (t.date, t.id)):
        key = (t.name, round(abs(t.amount), 2))
        previous = seen.setdefault(key, [])
        if previous and (t.date - previous[-1].date).days < DUPLICATE_WINDOW_DAYS:
            anomalies.append(
                AnomalyDetection(
                    id=_new_id(f"duplicate-{t.id}"),
                    type="duplicate_charge",
                    severity="high",
                    confidence=85,
                    transaction=t,
                    category=_label(t.category),
                    amount=abs(t.amount),
                    description=f"Potential duplicate charge: {t.name} for ${abs(t.amount):.2f}",
                    recommendation="Verify if this is a legitimate duplicate charge or contact the merchant",
                    detected_at=detected_at,
                    metadata={"original_transaction_id": previous[-1].id},
                )
            )
        previous.append(t)
    return anomalies


def time_slot(hour: int) -> str:
    if hour < 6:
        return "late-night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def detect_unusual_patterns(recent: List[Transaction], detected_at: datetime) -> List[AnomalyDetection]:
    # Only rows that carry a time of day can be placed in a slot
    slots: Dict[str, List[Transaction]] = {}
    for t in recent:
        if t.time is not None:
            slots.setdefault(time_slot(t.time.hour), []).append(t)

    late = slots.get("late-night", [])
    if len(late) <= 3:
        return []
    return [
        AnomalyDetection(
            id=_new_id("pattern"),
            type="unusual_pattern",
            severity="medium",
            confidence=75,
            description=f"{len(late)} transactions detected during unusual hours (late-night)",
            recommendation="Review these transactions for potential fraudulent activity",
            detected_at=detected_at,
            metadata={"time_slot": "late-night", "transaction_count": len(late)},
        )
    ]


def detect_category_surges(
    recent: List[Transaction],
    patterns: Dict[str, SpendingPattern],
    timeframe: str,
    detected_at: datetime,
) -> List[AnomalyDetection]:
    totals: Dict[str, float] = {}
    for t in recent:
        category = _label(t.category)
        totals[category] = totals.get(category, 0.0) + abs(t.amount)

    anomalies = []
    for category, total in totals.items():
        pattern = patterns.get(category)
        if pattern is None:
            continue
        expected = {
            "day": pattern.average_daily,
            "week": pattern.average_weekly,
            "month": pattern.average_monthly,
        }[timeframe]
        if expected <= 0:
            continue
        surge = total / expected
        if surge > 1.5:
            anomalies.append(
                AnomalyDetection(
                    id=_new_id(f"surge-{category}"),
                    type="category_surge",
                    severity="high" if surge > 2 else "medium",
                    confidence=80,
                    category=category,
                    amount=round(total, 2),
                    description=f"Spending in {category} is {(surge - 1) * 100:.0f}% above normal",
                    recommendation=(
                        f"Consider reviewing your {category} expenses to ensure they align with your budget"
                    ),
                    detected_at=detected_at,
                    metadata={"surge": round(surge, 2), "expected_total": round(expected, 2)},
                )
            )
    return anomalies


def detect_velocity_changes(recent: List[Transaction], detected_at: datetime) -> List[AnomalyDetection]:
    counts: Dict[date, int] = {}
    for t in recent:
        counts[t.date] = counts.get(t.date, 0) + 1
    if len(counts) < 2:
        return []

    avg_velocity = sum(counts.values()) / len(counts)
    max_velocity = max(counts.values())
    if max_velocity <= avg_velocity * 2:
        return []
    return [
        AnomalyDetection(
            id=_new_id("velocity"),
            type="velocity_change",
            severity="high" if max_velocity > avg_velocity * 3 else "medium",
            confidence=70,
            description=(
                f"Transaction velocity peaked at {max_velocity} transactions/day "
                f"({(max_velocity / avg_velocity - 1) * 100:.0f}% above average)"
            ),
            recommendation="Monitor spending closely during high-velocity periods",
            detected_at=detected_at,
            metadata={"max_velocity": max_velocity, "avg_velocity": round(avg_velocity, 2)},
        )
    ]


def detect_anomalies(
    transactions: Iterable[Transaction],
    timeframe: str = "month",
    now: Optional[datetime] = None,
    history: Optional["AnomalyHistory"] = None,
) -> List[AnomalyDetection]:
    """
    Run every detector over the transactions that fall inside ``timeframe``.

    Spending patterns are learned from the full ``transactions`` list, so
    pass in as much history as is available.  Results are appended to
    ``history`` when one is given.
    """
    transactions = list(transactions)
    now = now or datetime.now()
    recent = transactions_in_timeframe(transactions, timeframe, now)
    patterns = analyze_spending_patterns(transactions)

    anomalies: List[AnomalyDetection] = []
    anomalies += detect_spending_spikes(recent, patterns, now)
    anomalies += detect_unusual_patterns(recent, now)
    anomalies += detect_duplicate_charges(recent, now)
    anomalies += detect_category_surges(recent, patterns, timeframe, now)
    anomalies += detect_velocity_changes(recent, now)

    logger.info(
        "Anomaly scan (%s): %d of %d transactions in window, %d flagged",
        timeframe,
        len(recent),
        len(transactions),
        len(anomalies),
    )
    if history is not None:
        history.record(anomalies)
    return anomalies


def seasonal_adjustment(d: date) -> float:
    # Holiday months run hot, January runs cool
    if d.month in (11, 12):
        return 1.3
    if d.month == 1:
        return 0.8
    return 1.0


def generate_cash_flow_projections(
    data: MonthlyFinancialData,
    days: int = 30,
    start: Optional[date] = None,
    starting_balance: float = 0.0,
) -> List[CashFlowProjection]:
    start = start or date.today()
    recurring_income = data.total_income
    recurring_expenses = data.subscription_total + data.debt_total + data.utility_costs
    variable_expenses = max(0.0, data.total_spending - recurring_expenses)

    daily_income = recurring_income / 30
    daily_expenses = (recurring_expenses + variable_expenses) / 30

    projections = []
    balance = starting_balance
    for i in range(1, days + 1):
        day = start + timedelta(days=i)
        adjustment = seasonal_adjustment(day)
        balance += daily_income - daily_expenses * adjustment

        confidence = max(50.0, 100 - i * 1.5)
        variance = (100 - confidence) / 100 * abs(balance) * 0.3
        projections.append(
            CashFlowProjection(
                date=day,
                projected_balance=round(balance, 2),
                confidence=confidence,
                upper_bound=round(balance + variance, 2),
                lower_bound=round(balance - variance, 2),
                factors=CashFlowFactors(
                    recurring_income=round(daily_income, 2),
                    recurring_expenses=round(daily_expenses, 2),
                    average_variable_expenses=round(variable_expenses / 30, 2),
                    seasonal_adjustment=adjustment,
                ),
            )
        )
    return projections


def _insight(type_, category, title, description, impact, confidence, priority, actionable, now, action=None):
    return IntelligenceInsight(
        id=_new_id(f"insight-{category}"),
        type=type_,
        category=category,
        title=title,
        description=description,
        impact=round(impact, 2),
        confidence=confidence,
        priority=priority,
        actionable=actionable,
        suggested_action=action,
        created_at=now,
    )


def generate_insights(
    data: MonthlyFinancialData,
    history_transactions: Optional[Iterable[Transaction]] = None,
    subscriptions: Optional[List[Subscription]] = None,
    now: Optional[datetime] = None,
    anomalies: Optional[List[AnomalyDetection]] = None,
) -> List[IntelligenceInsight]:
    now = now or datetime.now()
    transactions = list(history_transactions) if history_transactions is not None else list(data.all_transactions)
    patterns = analyze_spending_patterns(transactions)
    if anomalies is None:
        anomalies = detect_anomalies(transactions, "month", now)

    insights: List[IntelligenceInsight] = []

    if subscriptions:
        potential = calculate_savings_potential(subscriptions, now.date())
        if potential.unused_subscriptions:
            count = len(potential.unused_subscriptions)
            insights.append(
                _insight(
                    "optimization",
                    "subscriptions",
                    "Subscription Optimization Opportunity",
                    f"You have {count} subscriptions that have been running for over 60 days without review",
                    potential.potential_monthly_savings,
                    85,
                    "medium",
                    True,
                    now,
                    "Review and cancel unused subscriptions",
                )
            )
    else:
        inactive = [s for s in data.subscriptions if not s.is_active]
        if inactive:
            insights.append(
                _insight(
                    "optimization",
                    "subscriptions",
                    "Subscription Optimization Opportunity",
                    f"You are still being charged for {len(inactive)} inactive subscriptions",
                    sum(s.amount for s in inactive),
                    85,
                    "medium",
                    True,
                    now,
                    "Review and cancel unused subscriptions",
                )
            )

    for category, pattern in patterns.items():
        if pattern.trend == "increasing" and pattern.average_monthly > 500:
            insights.append(
                _insight(
                    "warning",
                    category,
                    f"Rising {category} Expenses",
                    f"Your {category} spending has been increasing and is now at "
                    f"${pattern.average_monthly:,.2f}/month",
                    pattern.average_monthly * 0.2,
                    75,
                    "high",
                    True,
                    now,
                    f"Set a budget limit for {category} to control spending",
                )
            )
        elif pattern.trend == "volatile":
            insights.append(
                _insight(
                    "warning",
                    category,
                    f"Volatile {category} Spending",
                    f"Your {category} spending patterns are inconsistent, making budgeting difficult",
                    0,
                    80,
                    "low",
                    True,
                    now,
                    f"Track {category} expenses more closely to identify causes of variation",
                )
            )
        elif pattern.trend == "decreasing":
            insights.append(
                _insight(
                    "achievement",
                    category,
                    f"Great job reducing {category} spending!",
                    f"Your {category} expenses are down about {abs(pattern.average_change) * 100:.0f}% "
                    "week over week",
                    pattern.average_monthly * 0.2,
                    85,
                    "low",
                    False,
                    now,
                )
            )

    serious = [a for a in anomalies if a.severity in ("high", "critical")]
    if serious:
        insights.append(
            _insight(
                "warning",
                "security",
                "Unusual Activity Detected",
                f"{len(serious)} high-priority anomalies detected in your recent transactions",
                0,
                90,
                "high",
                True,
                now,
                "Review flagged transactions immediately",
            )
        )

    return sorted(insights, key=lambda i: PRIORITY_ORDER[i.priority])


class AnomalyHistory:
    """Persisted log of detected anomalies, trimmed to the most recent entries."""

    def __init__(self, db: Session, limit: int = ANOMALY_HISTORY_LIMIT):
        self.db = db
        self.limit = limit

    def record(self, anomalies: Iterable[AnomalyDetection]) -> None:
        for a in anomalies:
            details = dict(a.metadata)
            self.db.add(
                AnomalyRecord(
                    id=a.id,
                    type=a.type,
                    severity=a.severity,
                    confidence=a.confidence,
                    category=a.category,
                    amount=a.amount,
                    transaction_id=a.transaction.id if a.transaction else None,
                    description=a.description,
                    recommendation=a.recommendation,
                    detected_at=a.detected_at,
                    details=details,
                )
            )
        self.db.flush()

        stale = (
            self.db.query(AnomalyRecord.seq)
            .order_by(AnomalyRecord.seq.desc())
            .offset(self.limit)
            .all()
        )
        if stale:
            self.db.query(AnomalyRecord).filter(AnomalyRecord.seq.in_([s.seq for s in stale])).delete(
                synchronize_session=False
            )
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Error saving anomaly history")
            raise

    def all(self) -> List[AnomalyDetection]:
        records = self.db.query(AnomalyRecord).order_by(AnomalyRecord.seq).all()
        return [
            AnomalyDetection(
                id=r.id,
                type=r.type,
                severity=r.severity,
                confidence=r.confidence,
                description=r.description,
                recommendation=r.recommendation,
                detected_at=r.detected_at,
                category=r.category,
                amount=r.amount,
                metadata={**(r.details or {}), "transaction_id": r.transaction_id},
            )
            for r in records
        ]

    def clear(self) -> None:
        self.db.query(AnomalyRecord).delete()
        self.db.commit()

    def last_analysis_time(self) -> Optional[datetime]:
        latest = self.db.query(AnomalyRecord).order_by(AnomalyRecord.seq.desc()).first()
        return latest.detected_at if latest else None
