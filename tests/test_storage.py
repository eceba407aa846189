import pandas as pd
import pytest
from botocore.exceptions import ClientError

import config
import storage


class FakeS3:
    class exceptions:
        class NoSuchKey(Exception):
            pass

    def __init__(self, fail=False):
        self.objects = {}
        self.fail = fail

    def put_object(self, Bucket, Key, Body):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[(Bucket, Key)] = Body

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise self.exceptions.NoSuchKey(Key)

        class Body:
            def __init__(self, data):
                self.data = data

            def read(self):
                return self.data

        return {"Body": Body(self.objects[(Bucket, Key)])}

    def list_objects_v2(self, Bucket, Prefix):
        keys = [k for b, k in self.objects if b == Bucket and k.startswith(Prefix)]
        return {"Contents": [{"Key": k} for k in keys]} if keys else {}


@pytest.fixture
def fake_s3(monkeypatch):
    client = FakeS3()
    monkeypatch.setattr(config, "S3_BUCKET", "subtracker-test")
    monkeypatch.setattr(storage, "get_s3_client", lambda: client)
    return client


def test_local_save_and_load(local_storage):
    frame = pd.DataFrame({"Date": ["2025-08-01"], "Amount": [12.5]})

    assert storage.save_file("report.csv", frame)
    assert (local_storage / config.EXPORT_FOLDER / "report.csv").exists()
    loaded = storage.load_file("report.csv")
    assert loaded["Amount"].tolist() == [12.5]


def test_local_list_files(local_storage):
    storage.save_file("b.json", "{}")
    storage.save_file("a.csv", "x\n1\n")
    storage.save_file("other.csv", "x\n1\n", folder="backups")

    assert storage.list_files() == ["a.csv", "b.json"]
    assert storage.list_files("backups") == ["other.csv"]
    assert storage.list_files("missing") == []


def test_local_missing_file(local_storage):
    assert storage.load_bytes("nope.csv") is None
    assert storage.load_file("nope.csv") is None


def test_s3_round_trip(fake_s3):
    assert storage.save_file("financial-data-2025-08.json", '{"month": 8}')
    assert ("subtracker-test", "exports/financial-data-2025-08.json") in fake_s3.objects
    assert storage.load_bytes("financial-data-2025-08.json") == b'{"month": 8}'
    assert storage.load_bytes("missing.json") is None
    assert storage.list_files() == ["financial-data-2025-08.json"]


def test_s3_failure_is_reported(fake_s3):
    fake_s3.fail = True
    assert storage.save_file("x.csv", "a\n1\n") is False
