from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

import pandas as pd

from financial_types import DebtPayment, MonthlyFinancialData

logger = logging.getLogger(__name__)

STRATEGIES = ("avalanche", "snowball")
MAX_MONTHS = 1200  # 100 years


@dataclass(frozen=True)
class Debt:
    creditor: str
    debt_type: str
    balance: float
    interest_rate: float  # APR, percent
    minimum_payment: float


@dataclass(frozen=True)
class DebtPayoff:
    creditor: str
    balance: float
    interest_rate: float
    months_to_payoff: Optional[int]
    total_interest: float
    schedule: pd.DataFrame


def estimate_months_remaining(balance: float, rate_apr: float, payment: float) -> Optional[float]:
    """Closed-form months left on a fixed payment; None when the payment never clears it."""
    r = (rate_apr / 100.0) / 12.0
    if payment <= 0 or balance <= 0 or payment <= r * balance:
        return None
    if r == 0:
        return balance / payment
    return max(0.0, -math.log(1 - r * balance / payment) / math.log(1 + r))


def simulate_payoff(balance: float, rate_apr: float, monthly_payment: float, extra_payment: float = 0) -> pd.DataFrame:
    """
    Simulates the amortization schedule of a debt.
    Returns a DataFrame with Month, Balance, Interest, Principal, TotalPayment.
    """
    if balance <= 0 or monthly_payment <= 0:
        return pd.DataFrame()

    monthly_rate = (rate_apr / 100.0) / 12.0
    payment = monthly_payment + extra_payment

    if payment <= balance * monthly_rate:
        logger.warning("Payment %.2f does not cover interest on %.2f at %.2f%% APR", payment, balance, rate_apr)
        return pd.DataFrame()

    schedule = []
    remaining = balance
    month = 0
    while remaining > 0.005 and month < MAX_MONTHS:
        month += 1
        interest = remaining * monthly_rate
        principal = min(payment - interest, remaining)
        remaining -= principal
        schedule.append(
            {
                "Month": month,
                "Balance": round(max(0.0, remaining), 2),
                "Interest": round(interest, 2),
                "Principal": round(principal, 2),
                "TotalPayment": round(interest + principal, 2),
            }
        )
    return pd.DataFrame(schedule)


def order_debts(debts: Iterable[Debt], strategy: str = "avalanche") -> List[Debt]:
    if strategy not in STRATEGIES:
        raise ValueError(f"strategy must be one of {STRATEGIES}, got {strategy!r}")
    if strategy == "avalanche":
        return sorted(debts, key=lambda d: (-d.interest_rate, d.balance))
    return sorted(debts, key=lambda d: (d.balance, -d.interest_rate))


def build_payoff_plan(debts: Iterable[Debt], strategy: str = "avalanche", extra_payment: float = 0.0) -> List[DebtPayoff]:
    """
    Simulate every debt together, month by month.  Each open debt gets its
    minimum; whatever is left of the monthly budget (all minimums plus the
    extra payment) goes to the open debts in priority order.  A cleared
    debt's minimum stays in the budget and moves down to the next debt.
    """
    ordered = order_debts(debts, strategy)
    budget = sum(d.minimum_payment for d in ordered) + extra_payment
    balances = [d.balance for d in ordered]
    schedules: List[list] = [[] for _ in ordered]
    cleared: List[Optional[int]] = [None if d.balance > 0.005 else 0 for d in ordered]

    month = 0
    while any(c is None for c in cleared) and month < MAX_MONTHS:
        month += 1
        before = sum(balances)
        open_debts = [i for i, c in enumerate(cleared) if c is None]

        interest = {i: balances[i] * (ordered[i].interest_rate / 100.0) / 12.0 for i in open_debts}
        paid = {i: min(ordered[i].minimum_payment, balances[i] + interest[i]) for i in open_debts}
        surplus = budget - sum(paid.values())
        for i in open_debts:
            top_up = min(surplus, balances[i] + interest[i] - paid[i])
            paid[i] += top_up
            surplus -= top_up

        for i in open_debts:
            principal = paid[i] - interest[i]
            balances[i] -= principal
            schedules[i].append(
                {
                    "Month": month,
                    "Balance": round(max(0.0, balances[i]), 2),
                    "Interest": round(interest[i], 2),
                    "Principal": round(principal, 2),
                    "TotalPayment": round(paid[i], 2),
                }
            )
            if balances[i] <= 0.005:
                cleared[i] = month

        if sum(balances) >= before:
            logger.warning("Payments no longer reduce the remaining debt after month %d", month)
            break

    plan = []
    for d, schedule, months in zip(ordered, schedules, cleared):
        if months is None:
            plan.append(DebtPayoff(d.creditor, d.balance, d.interest_rate, None, 0.0, pd.DataFrame()))
            continue
        frame = pd.DataFrame(schedule)
        interest = round(float(frame["Interest"].sum()), 2) if not frame.empty else 0.0
        plan.append(DebtPayoff(d.creditor, d.balance, d.interest_rate, months, interest, frame))
    return plan


def payoff_plan_frame(plan: List[DebtPayoff]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Creditor": p.creditor,
                "Balance": p.balance,
                "InterestRateAPR": p.interest_rate,
                "MonthsToPayoff": p.months_to_payoff,
                "TotalInterest": p.total_interest,
            }
            for p in plan
        ]
    )


def debts_from_payments(data: MonthlyFinancialData) -> List[Debt]:
    """Latest known balance per creditor; payments without a balance are skipped."""
    latest: dict[str, DebtPayment] = {}
    for p in sorted(data.debt_payments, key=lambda p: p.date):
        if p.remaining_balance is not None:
            latest[p.creditor] = p

    return [
        Debt(
            creditor=p.creditor,
            debt_type=getattr(p.debt_type, "value", p.debt_type),
            balance=p.remaining_balance,
            interest_rate=p.interest_rate or 0.0,
            minimum_payment=p.minimum_payment or p.amount,
        )
        for p in latest.values()
    ]
