"""
financial_types.py
------------------

Value objects for one month of financial activity: transactions, debt
payments and subscription payments, plus the summaries derived from them.

All records are frozen dataclasses.  A month is built once from its rows
(sample data, the database or an import) and every total on
``MonthlyFinancialData`` is derived from those rows rather than stored
alongside them, so the totals can never drift from the data.
"""

from __future__ import annotations

import calendar
import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Optional, Tuple


class TransactionCategory(str, Enum):
    TRANSPORTATION = "transportation"
    DEBT_PAYMENTS = "debt_payments"
    UTILITIES = "utilities"
    SUBSCRIPTIONS = "subscriptions"
    RENT = "rent"
    GROCERIES = "groceries"
    DINING = "dining"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    HEALTHCARE = "healthcare"
    INSURANCE = "insurance"
    SAVINGS = "savings"
    INVESTMENTS = "investments"
    TAXES = "taxes"
    OTHER = "other"


class DebtType(str, Enum):
    AFFIRM = "affirm"
    KLARNA = "klarna"
    CREDIT_CARD = "credit_card"
    STUDENT_LOAN = "student_loan"
    CREDIT_BUILDER = "credit_builder"
    PERSONAL_LOAN = "personal_loan"
    AUTO_LOAN = "auto_loan"
    MORTGAGE = "mortgage"
    OTHER = "other"


class SubscriptionCategory(str, Enum):
    BUSINESS_TOOLS = "business_tools"
    PERSONAL = "personal"
    ENTERTAINMENT = "entertainment"
    PRODUCTIVITY = "productivity"
    CLOUD_STORAGE = "cloud_storage"
    AI_SERVICES = "ai_services"
    DEVELOPMENT = "development"
    OTHER = "other"


@dataclass(frozen=True)
class Transaction:
    id: str
    date: date
    name: str
    amount: float
    category: TransactionCategory
    recurring: bool = False
    vendor: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    source: str = "manual"  # 'manual', 'sample', 'imported'
    time: Optional[time] = None  # time of day, when the feed provides one


@dataclass(frozen=True)
class DebtPayment:
    id: str
    date: date
    name: str
    amount: float
    debt_type: DebtType
    creditor: str
    remaining_balance: Optional[float] = None
    interest_rate: Optional[float] = None  # APR, percent
    minimum_payment: Optional[float] = None
    due_date: Optional[date] = None


@dataclass(frozen=True)
class SubscriptionPayment:
    id: str
    date: date
    name: str
    service_name: str
    amount: float
    category: SubscriptionCategory
    frequency: str = "monthly"  # 'monthly', 'yearly', 'weekly', 'quarterly'
    is_active: bool = True
    next_payment_date: Optional[date] = None


@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    display_name: str
    amount: float
    percentage: int
    transaction_count: int
    icon: Optional[str] = None
    color: Optional[str] = None
    transactions: Tuple[Transaction, ...] = ()


@dataclass(frozen=True)
class MonthlyFinancialData:
    month: int
    year: int
    transactions: Tuple[Transaction, ...] = ()
    debt_payments: Tuple[DebtPayment, ...] = ()
    subscriptions: Tuple[SubscriptionPayment, ...] = ()
    total_income: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @property
    def month_name(self) -> str:
        return calendar.month_name[self.month]

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def all_transactions(self) -> Tuple[Transaction, ...]:
        """Transactions plus debt and subscription payments in one list."""
        debts = tuple(
            Transaction(
                id=d.id,
                date=d.date,
                name=d.name,
                amount=d.amount,
                category=TransactionCategory.DEBT_PAYMENTS,
                recurring=True,
                vendor=d.creditor,
            )
            for d in self.debt_payments
        )
        subs = tuple(
            Transaction(
                id=s.id,
                date=s.date,
                name=s.name,
                amount=s.amount,
                category=TransactionCategory.SUBSCRIPTIONS,
                recurring=s.is_active,
                vendor=s.service_name,
            )
            for s in self.subscriptions
        )
        return self.transactions + debts + subs

    def _category_total(self, category: TransactionCategory) -> float:
        return round(sum(t.amount for t in self.transactions if t.category == category), 2)

    @property
    def transportation_costs(self) -> float:
        return self._category_total(TransactionCategory.TRANSPORTATION)

    @property
    def utility_costs(self) -> float:
        return self._category_total(TransactionCategory.UTILITIES)

    @property
    def debt_total(self) -> float:
        return round(sum(d.amount for d in self.debt_payments), 2)

    @property
    def subscription_total(self) -> float:
        return round(sum(s.amount for s in self.subscriptions), 2)

    @property
    def total_spending(self) -> float:
        return round(sum(t.amount for t in self.all_transactions), 2)

    @property
    def net_amount(self) -> float:
        return round(self.total_income - self.total_spending, 2)

    @property
    def categories(self) -> list[CategoryBreakdown]:
        from financial_service import calculate_categories

        return calculate_categories(self.all_transactions)


@dataclass(frozen=True)
class FinancialSummary:
    total_external_spending: float = 0.0
    transportation: float = 0.0
    debt_and_credit: float = 0.0
    utilities: float = 0.0
    subscriptions: float = 0.0
    other: float = 0.0
    savings_rate: float = 0.0
    month_over_month_change: float = 0.0


@dataclass(frozen=True)
class CalendarEntry:
    name: str
    amount: float
    type: str  # 'subscription', 'debt', 'utility', 'transport', 'other'
    category: str


@dataclass(frozen=True)
class CalendarDay:
    date: int  # day of month
    transactions: Tuple[CalendarEntry, ...] = ()
    total_amount: float = 0.0


@dataclass(frozen=True)
class DebtSummary:
    debt_type: DebtType
    display_name: str
    total_amount: float
    payment_count: int
    average_payment: float
    payments: Tuple[DebtPayment, ...] = field(default=())


@dataclass(frozen=True)
class SubscriptionSummary:
    category: SubscriptionCategory
    display_name: str
    total_amount: float
    active_count: int
    monthly_recurring: float
    subscriptions: Tuple[SubscriptionPayment, ...] = field(default=())


def to_jsonable(obj):
    """Convert dataclasses, enums and dates into JSON-friendly structures."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        out = {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
        if isinstance(obj, MonthlyFinancialData):
            out.update(
                {
                    "month_name": obj.month_name,
                    "total_spending": obj.total_spending,
                    "net_amount": obj.net_amount,
                    "transportation_costs": obj.transportation_costs,
                    "utility_costs": obj.utility_costs,
                    "debt_total": obj.debt_total,
                    "subscription_total": obj.subscription_total,
                    "categories": [to_jsonable(c) for c in obj.categories],
                }
            )
        return out
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj
