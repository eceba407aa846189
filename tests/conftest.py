from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import config
from database import get_db, init_db
from financial_service import FinancialStore
from sample_data import load_sample_month


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sample_month():
    return load_sample_month()


@pytest.fixture
def store(db):
    return FinancialStore(db)


@pytest.fixture
def seeded_store(store, sample_month):
    store.save_month(sample_month)
    return store


@pytest.fixture
def month_end():
    return date(2025, 8, 31)


@pytest.fixture
def local_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "S3_BUCKET", None)
    monkeypatch.setattr(config, "LOCAL_DATA_ROOT", str(tmp_path))
    return tmp_path


@pytest.fixture
def client(engine, seeded_store):
    from api import app

    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
