"""
sample_data.py

Built-in sample month (August 2025) used to seed a fresh database and to
give the dashboard something to show before the user imports anything.
The rows cover the common shapes of household spending: recurring
transport and utility bills, buy-now-pay-later and card payments, business
and personal subscriptions, and a handful of one-off expenses.  Each entry
is a plain tuple so the list is easy to extend by hand.
"""

from datetime import date

from financial_types import (
    DebtPayment,
    DebtType,
    MonthlyFinancialData,
    SubscriptionCategory,
    SubscriptionPayment,
    Transaction,
    TransactionCategory,
)

SAMPLE_MONTH = 8
SAMPLE_YEAR = 2025

# (id, day, name, amount, category, recurring, vendor)
TRANSACTIONS = [
    ("trans-1", 28, "Car Insurance", 256.00, TransactionCategory.TRANSPORTATION, True, "Insurance Company"),
    ("trans-2", 30, "Car Payment", 952.00, TransactionCategory.TRANSPORTATION, True, "Auto Lender"),
    ("util-1", 27, "SDGE + Cethron", 475.00, TransactionCategory.UTILITIES, True, "SDGE"),
    ("util-2", 28, "SDGE + Cethron", 475.00, TransactionCategory.UTILITIES, True, "SDGE"),
    ("other-1", 16, "Dev Fund", 15.15, TransactionCategory.OTHER, False, None),
    ("other-2", 21, "Dev Fund", 5.00, TransactionCategory.OTHER, False, None),
    ("other-3", 28, "Dev Fund", 0.99, TransactionCategory.OTHER, False, None),
    ("other-4", 28, "Taxes", 50.00, TransactionCategory.OTHER, False, None),
    ("other-5", 28, "Operating Expenses", 100.00, TransactionCategory.OTHER, False, None),
]

# (day, amount)
AFFIRM_PAYMENTS = [
    (4, 67.00),
    (5, 36.38),
    (8, 127.47),
    (10, 93.70),
    (14, 41.79),
    (18, 30.05),
    (23, 31.76),
    (25, 51.31),
    (30, 57.48),
]

# (day, amount, name)
CREDIT_CARD_PAYMENTS = [
    (13, 196.99, "Credit Card Payment"),
    (18, 98.00, "Credit Card Payment"),
    (19, 58.02, "Credit Card Payment"),
    (22, 40.00, "Credit Card Payment"),
    (30, 20.00, "CC Payment - Marco Leano"),
]

# (day, service, detail, amount)
BUSINESS_SUBSCRIPTIONS = [
    (8, "Notion", "Workspace", 68.00),
    (8, "Warp", "Terminal", 25.23),
    (12, "Warp", "Terminal", 20.04),
    (31, "Supabase", "Database", 44.58),
    (1, "Sequence", "Financial", 9.33),
    (30, "Sequence", "Financial", 16.23),
    (17, "Claude", "AI Assistant", 20.00),
    (22, "Canva", "Design", 12.99),
    (11, "OpenAI", "GPT", 5.00),
]

PERSONAL_SUBSCRIPTIONS = [
    (8, "Apple Subscriptions", None, 31.97),
    (26, "Google One", "Storage", 1.99),
    (29, "Google One", "Storage", 19.99),
    (31, "Spotify", "Music", 11.99),
]


def _day(day: int) -> date:
    return date(SAMPLE_YEAR, SAMPLE_MONTH, day)


def load_sample_month() -> MonthlyFinancialData:
    """Build the August 2025 sample month."""
    transactions = tuple(
        Transaction(
            id=tid,
            date=_day(day),
            name=name,
            amount=amount,
            category=category,
            recurring=recurring,
            vendor=vendor,
            source="sample",
        )
        for tid, day, name, amount, category, recurring, vendor in TRANSACTIONS
    )

    debts = [
        DebtPayment(
            id=f"affirm-{i}",
            date=_day(day),
            name="Affirm Payment",
            amount=amount,
            debt_type=DebtType.AFFIRM,
            creditor="Affirm",
        )
        for i, (day, amount) in enumerate(AFFIRM_PAYMENTS, start=1)
    ]
    debts += [
        DebtPayment(
            id=f"cc-{i}",
            date=_day(day),
            name=name,
            amount=amount,
            debt_type=DebtType.CREDIT_CARD,
            creditor="Credit Card",
        )
        for i, (day, amount, name) in enumerate(CREDIT_CARD_PAYMENTS, start=1)
    ]
    debts.append(
        DebtPayment(
            id="student-loan-1",
            date=_day(12),
            name="Student Loan Payment",
            amount=23.78,
            debt_type=DebtType.STUDENT_LOAN,
            creditor="Student Loan Servicer",
        )
    )
    debts.append(
        DebtPayment(
            id="credit-builder-1",
            date=_day(30),
            name="Credit Builder",
            amount=40.00,
            debt_type=DebtType.CREDIT_BUILDER,
            creditor="Credit Builder",
        )
    )

    subs = [
        SubscriptionPayment(
            id=f"bus-sub-{i}",
            date=_day(day),
            name=f"{service} ({detail})",
            service_name=service,
            amount=amount,
            category=SubscriptionCategory.BUSINESS_TOOLS,
        )
        for i, (day, service, detail, amount) in enumerate(BUSINESS_SUBSCRIPTIONS, start=1)
    ]
    subs += [
        SubscriptionPayment(
            id=f"per-sub-{i}",
            date=_day(day),
            name=f"{service} ({detail})" if detail else service,
            service_name=service,
            amount=amount,
            category=SubscriptionCategory.PERSONAL,
        )
        for i, (day, service, detail, amount) in enumerate(PERSONAL_SUBSCRIPTIONS, start=1)
    ]
    subs += [
        SubscriptionPayment(
            id="other-sub-1",
            date=_day(1),
            name="General Subscriptions",
            service_name="Various",
            amount=38.00,
            category=SubscriptionCategory.OTHER,
        ),
        SubscriptionPayment(
            id="other-sub-2",
            date=_day(1),
            name="AI Subs (Various)",
            service_name="AI Services",
            amount=20.00,
            category=SubscriptionCategory.AI_SERVICES,
        ),
    ]

    return MonthlyFinancialData(
        month=SAMPLE_MONTH,
        year=SAMPLE_YEAR,
        transactions=transactions,
        debt_payments=tuple(debts),
        subscriptions=tuple(subs),
        total_income=0.0,
    )
