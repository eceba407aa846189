"""
financial_service.py
--------------------

Monthly aggregation over transactions, debt payments and subscription
payments: category breakdowns, the headline summary, the calendar view and
the per-type debt / per-category subscription roll-ups.

The pure functions take a ``MonthlyFinancialData`` and return value objects.
``FinancialStore`` is the explicit loader that builds those months from the
database and writes new rows back.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import (
    DebtPaymentRecord,
    MonthRecord,
    SubscriptionPaymentRecord,
    TransactionRecord,
)
from exceptions import MonthNotFoundError
from financial_types import (
    CalendarDay,
    CalendarEntry,
    CategoryBreakdown,
    DebtPayment,
    DebtSummary,
    DebtType,
    FinancialSummary,
    MonthlyFinancialData,
    SubscriptionCategory,
    SubscriptionPayment,
    SubscriptionSummary,
    Transaction,
    TransactionCategory,
)

logger = logging.getLogger(__name__)

CATEGORY_CONFIG = {
    "transportation": {"name": "Transportation", "icon": "🚗", "color": "#8884d8"},
    "debt_payments": {"name": "Debt Payments", "icon": "💳", "color": "#82ca9d"},
    "utilities": {"name": "Utilities", "icon": "⚡", "color": "#ffc658"},
    "subscriptions": {"name": "Subscriptions", "icon": "📱", "color": "#ff7300"},
    "other": {"name": "Other", "icon": "📊", "color": "#8dd1e1"},
}

DEBT_DISPLAY_NAMES = {
    DebtType.AFFIRM: "Affirm",
    DebtType.KLARNA: "Klarna",
    DebtType.CREDIT_CARD: "Credit Cards",
    DebtType.STUDENT_LOAN: "Student Loans",
    DebtType.CREDIT_BUILDER: "Credit Builder",
    DebtType.PERSONAL_LOAN: "Personal Loan",
    DebtType.AUTO_LOAN: "Auto Loan",
    DebtType.MORTGAGE: "Mortgage",
    DebtType.OTHER: "Other Debt",
}

SUBSCRIPTION_DISPLAY_NAMES = {
    SubscriptionCategory.BUSINESS_TOOLS: "Business Tools",
    SubscriptionCategory.PERSONAL: "Personal",
    SubscriptionCategory.ENTERTAINMENT: "Entertainment",
    SubscriptionCategory.PRODUCTIVITY: "Productivity",
    SubscriptionCategory.CLOUD_STORAGE: "Cloud Storage",
    SubscriptionCategory.AI_SERVICES: "AI Services",
    SubscriptionCategory.DEVELOPMENT: "Development",
    SubscriptionCategory.OTHER: "Other",
}

CALENDAR_TYPES = {
    TransactionCategory.SUBSCRIPTIONS: "subscription",
    TransactionCategory.DEBT_PAYMENTS: "debt",
    TransactionCategory.UTILITIES: "utility",
    TransactionCategory.TRANSPORTATION: "transport",
}


def month_key(month: int, year: int) -> str:
    return f"{year}-{month:02d}"


def previous_month_of(month: int, year: int) -> tuple[int, int]:
    if month == 1:
        return 12, year - 1
    return month - 1, year


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _label(value) -> str:
    return getattr(value, "value", value)


def transactions_to_df(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            "Id": t.id,
            "Date": t.date,
            "Name": t.name,
            "Amount": t.amount,
            "Category": _label(t.category),
            "Recurring": t.recurring,
        }
        for t in transactions
    ]
    if not rows:
        return pd.DataFrame(columns=["Id", "Date", "Name", "Amount", "Category", "Recurring"])
    df = pd.DataFrame(rows)
    df["Date"] = pd.to_datetime(df["Date"])
    return df


def calculate_categories(transactions: Iterable[Transaction]) -> List[CategoryBreakdown]:
    """Group by category: sum, count and share of the grand total, largest first."""
    transactions = list(transactions)
    if not transactions:
        return []

    df = transactions_to_df(transactions)
    total_amount = df["Amount"].sum()
    grouped = (
        df.groupby("Category", sort=False)["Amount"]
        .agg(["sum", "count"])
        .sort_values("sum", ascending=False, kind="stable")
    )

    by_category: Dict[str, list] = defaultdict(list)
    for t in transactions:
        by_category[_label(t.category)].append(t)

    breakdown = []
    for category, row in grouped.iterrows():
        config = CATEGORY_CONFIG.get(category, {"name": category, "icon": "📊", "color": "#999999"})
        amount = float(row["sum"])
        percentage = _round_half_up(amount / total_amount * 100) if total_amount else 0
        breakdown.append(
            CategoryBreakdown(
                category=category,
                display_name=config["name"],
                amount=round(amount, 2),
                percentage=percentage,
                transaction_count=int(row["count"]),
                icon=config["icon"],
                color=config["color"],
                transactions=tuple(by_category[category]),
            )
        )
    return breakdown


def get_financial_summary(
    data: Optional[MonthlyFinancialData],
    previous: Optional[MonthlyFinancialData] = None,
) -> FinancialSummary:
    if data is None:
        return FinancialSummary()

    named = data.transportation_costs + data.debt_total + data.utility_costs + data.subscription_total
    savings_rate = (data.net_amount / data.total_income * 100) if data.total_income > 0 else 0.0
    mom_change = 0.0
    if previous is not None and previous.total_spending > 0:
        mom_change = (data.total_spending - previous.total_spending) / previous.total_spending * 100

    return FinancialSummary(
        total_external_spending=data.total_spending,
        transportation=data.transportation_costs,
        debt_and_credit=data.debt_total,
        utilities=data.utility_costs,
        subscriptions=data.subscription_total,
        other=round(data.total_spending - named, 2),
        savings_rate=round(savings_rate, 2),
        month_over_month_change=round(mom_change, 2),
    )


def get_calendar_data(data: Optional[MonthlyFinancialData]) -> List[CalendarDay]:
    if data is None:
        return []

    days: Dict[int, list] = defaultdict(list)
    for t in data.all_transactions:
        days[t.date.day].append(
            CalendarEntry(
                name=t.name,
                amount=t.amount,
                type=CALENDAR_TYPES.get(t.category, "other"),
                category=_label(t.category),
            )
        )

    return [
        CalendarDay(
            date=day,
            transactions=tuple(entries),
            total_amount=round(sum(e.amount for e in entries), 2),
        )
        for day, entries in sorted(days.items())
    ]


def get_debt_summary(data: Optional[MonthlyFinancialData]) -> List[DebtSummary]:
    if data is None:
        return []

    groups: Dict[DebtType, list] = defaultdict(list)
    for payment in data.debt_payments:
        groups[payment.debt_type].append(payment)

    summaries = []
    for debt_type, payments in groups.items():
        total = sum(p.amount for p in payments)
        summaries.append(
            DebtSummary(
                debt_type=debt_type,
                display_name=DEBT_DISPLAY_NAMES.get(debt_type, _label(debt_type)),
                total_amount=round(total, 2),
                payment_count=len(payments),
                average_payment=round(total / len(payments), 2),
                payments=tuple(payments),
            )
        )
    return sorted(summaries, key=lambda s: s.total_amount, reverse=True)


def get_subscription_summary(data: Optional[MonthlyFinancialData]) -> List[SubscriptionSummary]:
    if data is None:
        return []

    groups: Dict[SubscriptionCategory, list] = defaultdict(list)
    for sub in data.subscriptions:
        groups[sub.category].append(sub)

    summaries = []
    for category, subs in groups.items():
        summaries.append(
            SubscriptionSummary(
                category=category,
                display_name=SUBSCRIPTION_DISPLAY_NAMES.get(category, _label(category)),
                total_amount=round(sum(s.amount for s in subs), 2),
                active_count=sum(1 for s in subs if s.is_active),
                monthly_recurring=round(sum(s.amount for s in subs if s.frequency == "monthly"), 2),
                subscriptions=tuple(subs),
            )
        )
    return sorted(summaries, key=lambda s: s.total_amount, reverse=True)


# --- Record conversion ---

def _enum(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _transaction_from_record(r: TransactionRecord) -> Transaction:
    return Transaction(
        id=r.id,
        date=r.date,
        name=r.name,
        amount=r.amount,
        category=_enum(TransactionCategory, r.category, TransactionCategory.OTHER),
        recurring=bool(r.recurring),
        vendor=r.vendor,
        notes=r.notes,
        payment_method=r.payment_method,
        source=r.source or "manual",
        time=r.time,
    )


def _debt_from_record(r: DebtPaymentRecord) -> DebtPayment:
    return DebtPayment(
        id=r.id,
        date=r.date,
        name=r.name,
        amount=r.amount,
        debt_type=_enum(DebtType, r.debt_type, DebtType.OTHER),
        creditor=r.creditor,
        remaining_balance=r.remaining_balance,
        interest_rate=r.interest_rate,
        minimum_payment=r.minimum_payment,
        due_date=r.due_date,
    )


def _subscription_from_record(r: SubscriptionPaymentRecord) -> SubscriptionPayment:
    return SubscriptionPayment(
        id=r.id,
        date=r.date,
        name=r.name,
        service_name=r.service_name,
        amount=r.amount,
        category=_enum(SubscriptionCategory, r.category, SubscriptionCategory.OTHER),
        frequency=r.frequency or "monthly",
        is_active=bool(r.is_active),
        next_payment_date=r.next_payment_date,
    )


def _transaction_record(t: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=t.id,
        date=t.date,
        time=t.time,
        name=t.name,
        amount=t.amount,
        category=_label(t.category),
        recurring=t.recurring,
        vendor=t.vendor,
        notes=t.notes,
        payment_method=t.payment_method,
        source=t.source,
    )


def _debt_record(d: DebtPayment) -> DebtPaymentRecord:
    return DebtPaymentRecord(
        id=d.id,
        date=d.date,
        name=d.name,
        amount=d.amount,
        debt_type=_label(d.debt_type),
        creditor=d.creditor,
        remaining_balance=d.remaining_balance,
        interest_rate=d.interest_rate,
        minimum_payment=d.minimum_payment,
        due_date=d.due_date,
    )


def _subscription_record(s: SubscriptionPayment) -> SubscriptionPaymentRecord:
    return SubscriptionPaymentRecord(
        id=s.id,
        date=s.date,
        name=s.name,
        service_name=s.service_name,
        amount=s.amount,
        category=_label(s.category),
        frequency=s.frequency,
        is_active=s.is_active,
        next_payment_date=s.next_payment_date,
    )


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class FinancialStore:
    """Loads months of financial data from the database and persists new rows."""

    def __init__(self, db: Session):
        self.db = db

    def load_months(self) -> Dict[str, MonthlyFinancialData]:
        income = {(m.year, m.month): m.total_income or 0.0 for m in self.db.query(MonthRecord)}

        # Months registered without any rows yet still show up, empty
        rows: Dict[tuple, dict] = {
            year_month: {"transactions": [], "debts": [], "subs": []} for year_month in income
        }
        rows = defaultdict(lambda: {"transactions": [], "debts": [], "subs": []}, rows)
        for r in self.db.query(TransactionRecord).order_by(TransactionRecord.date, TransactionRecord.id):
            rows[(r.date.year, r.date.month)]["transactions"].append(_transaction_from_record(r))
        for r in self.db.query(DebtPaymentRecord).order_by(DebtPaymentRecord.date, DebtPaymentRecord.id):
            rows[(r.date.year, r.date.month)]["debts"].append(_debt_from_record(r))
        for r in self.db.query(SubscriptionPaymentRecord).order_by(
            SubscriptionPaymentRecord.date, SubscriptionPaymentRecord.id
        ):
            rows[(r.date.year, r.date.month)]["subs"].append(_subscription_from_record(r))

        months = {}
        for (year, month), parts in sorted(rows.items()):
            data = MonthlyFinancialData(
                month=month,
                year=year,
                transactions=tuple(parts["transactions"]),
                debt_payments=tuple(parts["debts"]),
                subscriptions=tuple(parts["subs"]),
                total_income=income.get((year, month), 0.0),
            )
            months[data.key] = data
        return months

    def get_month(self, month: int, year: int) -> Optional[MonthlyFinancialData]:
        return self.load_months().get(month_key(month, year))

    def require_month(self, month: int, year: int) -> MonthlyFinancialData:
        data = self.get_month(month, year)
        if data is None:
            raise MonthNotFoundError(month, year)
        return data

    def current_month(self, today: Optional[date] = None) -> Optional[MonthlyFinancialData]:
        today = today or date.today()
        return self.get_month(today.month, today.year)

    def previous_month(self, data: MonthlyFinancialData) -> Optional[MonthlyFinancialData]:
        return self.get_month(*previous_month_of(data.month, data.year))

    def all_transactions(self) -> List[Transaction]:
        out: List[Transaction] = []
        for data in self.load_months().values():
            out.extend(data.all_transactions)
        return out

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to save %s", what)
            raise

    def _ensure_month(self, month: int, year: int) -> MonthRecord:
        key = month_key(month, year)
        record = self.db.get(MonthRecord, key)
        if record is None:
            record = MonthRecord(key=key, month=month, year=year, total_income=0.0)
            self.db.add(record)
            self.db.flush()
        return record

    def save_month(self, data: MonthlyFinancialData) -> MonthlyFinancialData:
        """Upsert every row of a month (rows are matched by id)."""
        record = self._ensure_month(data.month, data.year)
        record.total_income = data.total_income
        for t in data.transactions:
            self.db.merge(_transaction_record(t))
        for d in data.debt_payments:
            self.db.merge(_debt_record(d))
        for s in data.subscriptions:
            self.db.merge(_subscription_record(s))
        self._commit(f"month {data.key}")
        logger.info(
            "Saved %s: %d transactions, %d debt payments, %d subscriptions",
            data.key,
            len(data.transactions),
            len(data.debt_payments),
            len(data.subscriptions),
        )
        return self.require_month(data.month, data.year)

    def set_income(self, month: int, year: int, amount: float) -> None:
        self._ensure_month(month, year).total_income = amount
        self._commit(f"income for {month_key(month, year)}")

    def add_transactions(self, transactions: Iterable[Transaction]) -> int:
        count = 0
        for t in transactions:
            self._ensure_month(t.date.month, t.date.year)
            self.db.merge(_transaction_record(t))
            count += 1
        self._commit(f"{count} transactions")
        return count

    def add_transaction(
        self,
        date: date,
        name: str,
        amount: float,
        category: TransactionCategory | str = TransactionCategory.OTHER,
        recurring: bool = False,
        **extra,
    ) -> MonthlyFinancialData:
        """Store one new transaction and return its month as reloaded from the database."""
        transaction = Transaction(
            id=new_id("trans"),
            date=date,
            name=name,
            amount=amount,
            category=_enum(TransactionCategory, category, TransactionCategory.OTHER),
            recurring=recurring,
            **extra,
        )
        self.add_transactions([transaction])
        logger.info("Added transaction %s (%s, %.2f)", transaction.id, name, amount)
        return self.require_month(date.month, date.year)

    def add_debt_payment(self, payment: DebtPayment) -> MonthlyFinancialData:
        self._ensure_month(payment.date.month, payment.date.year)
        self.db.merge(_debt_record(payment))
        self._commit(f"debt payment {payment.id}")
        return self.require_month(payment.date.month, payment.date.year)

    def add_subscription_payment(self, payment: SubscriptionPayment) -> MonthlyFinancialData:
        self._ensure_month(payment.date.month, payment.date.year)
        self.db.merge(_subscription_record(payment))
        self._commit(f"subscription payment {payment.id}")
        return self.require_month(payment.date.month, payment.date.year)
