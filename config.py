import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Default to local SQLite, but allow override (e.g. Postgres)
DB_URL = os.getenv("DATABASE_URL", "sqlite:///subtracker.db")

# Exports go to S3 when a bucket is configured, otherwise to a local folder
S3_BUCKET = os.getenv("S3_BUCKET")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
EXPORT_FOLDER = os.getenv("EXPORT_FOLDER", "exports")
LOCAL_DATA_ROOT = os.getenv("LOCAL_DATA_ROOT", "subtracker_data")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Heuristic thresholds
ANOMALY_HISTORY_LIMIT = int(os.getenv("ANOMALY_HISTORY_LIMIT", "100"))
SPIKE_STDDEV_MULTIPLIER = float(os.getenv("SPIKE_STDDEV_MULTIPLIER", "2"))
DUPLICATE_WINDOW_DAYS = int(os.getenv("DUPLICATE_WINDOW_DAYS", "3"))

# Seed for synthetic filler history (trends, comparisons)
RANDOM_SEED = int(os.getenv("RANDOM_SEED", "2025"))


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
