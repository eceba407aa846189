import logging
from io import BytesIO
from pathlib import Path

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError

import config

logger = logging.getLogger(__name__)


def get_s3_client():
    return boto3.client("s3", region_name=config.AWS_REGION)


def _local_path(folder: str, file_name: str = "") -> Path:
    return Path(config.LOCAL_DATA_ROOT) / folder / file_name


def _to_bytes(data: bytes | str | pd.DataFrame) -> bytes:
    if isinstance(data, pd.DataFrame):
        buffer = BytesIO()
        data.to_csv(buffer, index=False)
        return buffer.getvalue()
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


def save_file(file_name: str, data: bytes | str | pd.DataFrame, folder: str = config.EXPORT_FOLDER) -> bool:
    """
    Saves a file to either local disk or S3.
    """
    body = _to_bytes(data)
    if config.S3_BUCKET:
        key = f"{folder}/{file_name}"
        try:
            get_s3_client().put_object(Bucket=config.S3_BUCKET, Key=key, Body=body)
        except (BotoCoreError, ClientError):
            logger.exception("S3 upload failed for s3://%s/%s", config.S3_BUCKET, key)
            return False
        logger.info("Saved s3://%s/%s", config.S3_BUCKET, key)
        return True

    local_path = _local_path(folder, file_name)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    local_path.write_bytes(body)
    logger.info("Saved %s", local_path)
    return True


def load_bytes(file_name: str, folder: str = config.EXPORT_FOLDER) -> bytes | None:
    if config.S3_BUCKET:
        s3 = get_s3_client()
        key = f"{folder}/{file_name}"
        try:
            obj = s3.get_object(Bucket=config.S3_BUCKET, Key=key)
            return obj["Body"].read()
        except s3.exceptions.NoSuchKey:
            return None
        except (BotoCoreError, ClientError):
            logger.exception("S3 download failed for s3://%s/%s", config.S3_BUCKET, key)
            return None

    local_path = _local_path(folder, file_name)
    if local_path.exists():
        return local_path.read_bytes()
    return None


def load_file(file_name: str, folder: str = config.EXPORT_FOLDER) -> pd.DataFrame | None:
    """
    Loads a CSV file from either local disk or S3.
    """
    body = load_bytes(file_name, folder)
    if body is None:
        return None
    return pd.read_csv(BytesIO(body))


def list_files(folder: str = config.EXPORT_FOLDER) -> list[str]:
    if config.S3_BUCKET:
        try:
            response = get_s3_client().list_objects_v2(Bucket=config.S3_BUCKET, Prefix=f"{folder}/")
        except (BotoCoreError, ClientError):
            logger.exception("S3 listing failed for %s/", folder)
            return []
        return sorted(obj["Key"].split("/")[-1] for obj in response.get("Contents", []))

    local_path = _local_path(folder)
    if local_path.exists():
        return sorted(f.name for f in local_path.glob("*") if f.is_file())
    return []
