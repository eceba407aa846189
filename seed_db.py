import logging

from config import configure_logging
from database import SessionLocal, init_db
from financial_service import FinancialStore
from sample_data import SAMPLE_MONTH, SAMPLE_YEAR, load_sample_month

logger = logging.getLogger(__name__)


def seed_sample_month(db) -> bool:
    """Store the built-in sample month unless that month already has data."""
    store = FinancialStore(db)
    existing = store.get_month(SAMPLE_MONTH, SAMPLE_YEAR)
    if existing is not None and existing.all_transactions:
        logger.info("Sample month %s already present. Skipping seed.", existing.key)
        return False

    data = store.save_month(load_sample_month())
    logger.info("Seeded %d sample rows for %s", len(data.all_transactions), data.key)
    return True


def main():
    configure_logging()
    init_db()
    db = SessionLocal()
    try:
        seed_sample_month(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
