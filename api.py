"""FastAPI tool server exposing the aggregation, analytics and intelligence layers."""

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import analytics
import intelligence
from database import get_db
from debt import Debt, build_payoff_plan, debts_from_payments
from exceptions import ImportFormatError, MonthNotFoundError
from financial_service import (
    FinancialStore,
    get_calendar_data,
    get_debt_summary,
    get_financial_summary,
    get_subscription_summary,
)
from financial_types import MonthlyFinancialData, to_jsonable
from import_export import export_file_name, export_to_csv, export_to_json, import_transactions_from_csv
from subscriptions import SubscriptionStore

app = FastAPI(title="SubTracker Tool Server", version="0.1.0")


def _month_or_404(db: Session, year: int, month: int) -> MonthlyFinancialData:
    try:
        return FinancialStore(db).require_month(month, year)
    except MonthNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/health")
async def health():
    return {"status": "ok"}


# --- Month views ---

@app.get("/months/{year}/{month}")
async def month_summary(year: int, month: int, db: Session = Depends(get_db)):
    data = _month_or_404(db, year, month)
    previous = FinancialStore(db).previous_month(data)
    return {
        "key": data.key,
        "month_name": data.month_name,
        "total_income": data.total_income,
        "net_amount": data.net_amount,
        "summary": to_jsonable(get_financial_summary(data, previous)),
    }


@app.get("/months/{year}/{month}/categories")
async def month_categories(year: int, month: int, db: Session = Depends(get_db)):
    return to_jsonable(_month_or_404(db, year, month).categories)


@app.get("/months/{year}/{month}/calendar")
async def month_calendar(year: int, month: int, db: Session = Depends(get_db)):
    return to_jsonable(get_calendar_data(_month_or_404(db, year, month)))


@app.get("/months/{year}/{month}/debts")
async def month_debts(year: int, month: int, db: Session = Depends(get_db)):
    return to_jsonable(get_debt_summary(_month_or_404(db, year, month)))


@app.get("/months/{year}/{month}/subscriptions")
async def month_subscriptions(year: int, month: int, db: Session = Depends(get_db)):
    return to_jsonable(get_subscription_summary(_month_or_404(db, year, month)))


# --- Tools ---

class AnomalyRequest(BaseModel):
    timeframe: Literal["day", "week", "month"] = "month"
    now: Optional[datetime] = Field(None, description="Reference time, defaults to the current time")


class AnomalyResponse(BaseModel):
    count: int
    anomalies: List[dict]


@app.post("/tools/detect_anomalies", response_model=AnomalyResponse)
async def detect_anomalies(req: AnomalyRequest, db: Session = Depends(get_db)):
    transactions = FinancialStore(db).all_transactions()
    anomalies = intelligence.detect_anomalies(
        transactions, req.timeframe, req.now, history=intelligence.AnomalyHistory(db)
    )
    return AnomalyResponse(count=len(anomalies), anomalies=to_jsonable(anomalies))


@app.get("/anomalies", response_model=AnomalyResponse)
async def anomaly_history(db: Session = Depends(get_db)):
    history = intelligence.AnomalyHistory(db).all()
    return AnomalyResponse(count=len(history), anomalies=to_jsonable(history))


@app.delete("/anomalies")
async def clear_anomaly_history(db: Session = Depends(get_db)):
    intelligence.AnomalyHistory(db).clear()
    return {"status": "cleared"}


class CashFlowRequest(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    days: int = Field(30, ge=1, le=365, description="Days to project forward")
    start: Optional[date] = None
    starting_balance: float = 0.0


@app.post("/tools/cash_flow")
async def cash_flow(req: CashFlowRequest, db: Session = Depends(get_db)):
    data = _month_or_404(db, req.year, req.month)
    projections = intelligence.generate_cash_flow_projections(data, req.days, req.start, req.starting_balance)
    return {"projections": to_jsonable(projections)}


class InsightRequest(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    today: Optional[date] = None


@app.post("/tools/insights")
async def insights(req: InsightRequest, db: Session = Depends(get_db)):
    store = FinancialStore(db)
    data = _month_or_404(db, req.year, req.month)
    now = datetime.combine(req.today, datetime.min.time()) if req.today else None

    financial = analytics.generate_insights(data, store.previous_month(data), store.load_months(), req.today)
    smart = intelligence.generate_insights(
        data,
        store.all_transactions(),
        SubscriptionStore(db).list_subscriptions(),
        now,
    )
    return {"financial": to_jsonable(financial), "intelligence": to_jsonable(smart)}


class BudgetRequest(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    budgets: Dict[str, float]
    today: Optional[date] = None


@app.post("/tools/budget_analysis")
async def budget_analysis(req: BudgetRequest, db: Session = Depends(get_db)):
    data = _month_or_404(db, req.year, req.month)
    return {"analysis": to_jsonable(analytics.get_budget_analysis(data, req.budgets, req.today))}


class DebtInput(BaseModel):
    creditor: str
    balance: float = Field(..., gt=0)
    rate_apr: float = Field(..., ge=0)
    payment: float = Field(..., gt=0)
    debt_type: str = "other"


class DebtPayoffRequest(BaseModel):
    debts: Optional[List[DebtInput]] = None
    strategy: Literal["avalanche", "snowball"] = "avalanche"
    extra_payment: float = Field(0.0, ge=0)
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)


class DebtPayoffEntry(BaseModel):
    creditor: str
    balance: float
    rate_apr: float
    months_to_payoff: Optional[int]
    total_interest: float


class DebtPayoffResponse(BaseModel):
    strategy: str
    ordered: List[str]
    plan: List[DebtPayoffEntry]


@app.post("/tools/debt_payoff", response_model=DebtPayoffResponse)
async def debt_payoff(req: DebtPayoffRequest, db: Session = Depends(get_db)):
    if req.debts is not None:
        debts = [Debt(d.creditor, d.debt_type, d.balance, d.rate_apr, d.payment) for d in req.debts]
    elif req.year is not None and req.month is not None:
        debts = debts_from_payments(_month_or_404(db, req.year, req.month))
    else:
        raise HTTPException(status_code=400, detail="Provide debts or a year and month to read balances from")

    plan = build_payoff_plan(debts, req.strategy, req.extra_payment)
    return DebtPayoffResponse(
        strategy=req.strategy,
        ordered=[p.creditor for p in plan],
        plan=[
            DebtPayoffEntry(
                creditor=p.creditor,
                balance=p.balance,
                rate_apr=p.interest_rate,
                months_to_payoff=p.months_to_payoff,
                total_interest=p.total_interest,
            )
            for p in plan
        ],
    )


class ImportCsvRequest(BaseModel):
    content: str = Field(..., description="Raw CSV text with Date, Description, Amount and Category columns")


class ImportCsvResponse(BaseModel):
    success: bool
    imported: int
    errors: List[str]


@app.post("/tools/import_csv", response_model=ImportCsvResponse)
async def import_csv(req: ImportCsvRequest, db: Session = Depends(get_db)):
    try:
        result = import_transactions_from_csv(req.content, FinancialStore(db))
    except ImportFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not result.success:
        raise HTTPException(status_code=400, detail=result.errors)
    return ImportCsvResponse(success=result.success, imported=result.imported, errors=result.errors)


@app.get("/tools/export/{year}/{month}")
async def export_month(
    year: int,
    month: int,
    format: Literal["csv", "json"] = Query("csv"),
    db: Session = Depends(get_db),
):
    data = _month_or_404(db, year, month)
    if format == "csv":
        content, media_type = export_to_csv(data), "text/csv"
    else:
        content, media_type = export_to_json(data), "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{export_file_name(data, format)}"'},
    )


if __name__ == "__main__":
    import uvicorn

    from config import configure_logging
    from database import init_db

    configure_logging()
    init_db()
    uvicorn.run("api:app", host="0.0.0.0", port=8001, reload=True)
