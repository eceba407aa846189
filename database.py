from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, Integer, String, Time, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DB_URL


def make_engine(url: str = DB_URL):
    return create_engine(url, connect_args={"check_same_thread": False} if "sqlite" in url else {})


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# --- Models ---

class MonthRecord(Base):
    __tablename__ = "months"

    key = Column(String, primary_key=True)  # 'YYYY-MM'
    month = Column(Integer)
    year = Column(Integer)
    total_income = Column(Float, default=0.0)


class TransactionRecord(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, index=True)
    date = Column(Date, index=True)
    time = Column(Time, nullable=True)
    name = Column(String)
    amount = Column(Float)
    category = Column(String)
    recurring = Column(Boolean, default=False)
    vendor = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)

    # Metadata
    source = Column(String, default="manual")     # 'manual', 'sample', 'imported'


class DebtPaymentRecord(Base):
    __tablename__ = "debt_payments"

    id = Column(String, primary_key=True, index=True)
    date = Column(Date, index=True)
    name = Column(String)
    amount = Column(Float)
    debt_type = Column(String)
    creditor = Column(String)
    remaining_balance = Column(Float, nullable=True)
    interest_rate = Column(Float, nullable=True)
    minimum_payment = Column(Float, nullable=True)
    due_date = Column(Date, nullable=True)


class SubscriptionPaymentRecord(Base):
    __tablename__ = "subscription_payments"

    id = Column(String, primary_key=True, index=True)
    date = Column(Date, index=True)
    name = Column(String)
    service_name = Column(String)
    amount = Column(Float)
    category = Column(String)
    frequency = Column(String, default="monthly")
    is_active = Column(Boolean, default=True)
    next_payment_date = Column(Date, nullable=True)


class SubscriptionRecord(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, index=True)
    name = Column(String)
    price = Column(Float)
    frequency = Column(String, default="monthly")
    next_payment = Column(Date, nullable=True)
    category = Column(String, default="Other")
    status = Column(String, default="active")    # 'active', 'cancelled', 'paused', 'watchlist', 'trial'
    is_active = Column(Boolean, default=True)
    subscription_type = Column(String, default="personal")
    card_id = Column(String, nullable=True)
    date_added = Column(Date, nullable=True)
    date_cancelled = Column(Date, nullable=True)
    description = Column(String, default="")
    billing_url = Column(String, default="")
    tags = Column(JSON, default=list)
    watchlist_notes = Column(String, nullable=True)
    reminder_days = Column(Integer, default=3)
    average_price = Column(Float, nullable=True)
    upcoming_changes = Column(JSON, default=list)


class PaymentCardRecord(Base):
    __tablename__ = "payment_cards"

    id = Column(String, primary_key=True, index=True)
    nickname = Column(String)
    last_four = Column(String, default="0000")
    type = Column(String, default="credit")
    issuer = Column(String, default="")
    color = Column(String, default="#3B82F6")
    is_default = Column(Boolean, default=False)
    date_added = Column(Date, nullable=True)


class AnomalyRecord(Base):
    __tablename__ = "anomaly_history"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, index=True)
    type = Column(String)
    severity = Column(String)
    confidence = Column(Integer)
    category = Column(String, nullable=True)
    amount = Column(Float, nullable=True)
    transaction_id = Column(String, nullable=True)
    description = Column(String)
    recommendation = Column(String)
    detected_at = Column(DateTime)
    details = Column(JSON, default=dict)

# --- Init DB ---
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
