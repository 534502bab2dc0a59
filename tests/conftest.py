"""Shared fixtures: an in-memory stand-in for the boto3 S3 client and simulator configuration."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from clients.s3_client import S3Client
from config import SimulatorConfig

BUCKET = "test-bucket"
PREFIX = "datasync-test/"


def client_error(code: str, operation: str, message: str = "error") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def fake_checksum(body: bytes, algorithm: str) -> str:
    return base64.b64encode(hashlib.sha256(algorithm.encode() + body).digest()[:8]).decode()


@dataclass
class StoredObject:
    body: bytes
    last_modified: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    checksums: dict[str, str] = field(default_factory=dict)
    storage_class: str | None = None


class FakePaginator:
    def __init__(self, s3: FakeS3) -> None:
        self._s3 = s3

    def paginate(self, Bucket: str, Prefix: str = "") -> Any:
        self._s3.check_bucket(Bucket, "ListObjectsV2")
        keys = sorted(k for k in self._s3.objects if k.startswith(Prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        for offset in range(0, len(keys), self._s3.page_size):
            batch = keys[offset:offset + self._s3.page_size]
            yield {
                "Contents": [
                    {
                        "Key": key,
                        "LastModified": self._s3.objects[key].last_modified,
                        "Size": len(self._s3.objects[key].body),
                        "ETag": f'"{hashlib.md5(self._s3.objects[key].body).hexdigest()}"',
                    }
                    for key in batch
                ]
            }


class FakeS3:
    """Implements the subset of the boto3 S3 client the simulator calls."""

    def __init__(self, bucket: str = BUCKET) -> None:
        self.bucket = bucket
        self.objects: dict[str, StoredObject] = {}
        self.page_size = 1000
        self.upload_calls: list[dict[str, Any]] = []
        self.delete_calls: list[list[str]] = []
        self.download_calls: list[str] = []
        self.upload_errors: dict[str, Exception] = {}
        self.head_errors: dict[str, Exception] = {}
        self.corrupt_downloads: set[str] = set()

    def put(
        self,
        key: str,
        body: bytes,
        last_modified: datetime | None = None,
        checksums: dict[str, str] | None = None,
    ) -> None:
        self.objects[key] = StoredObject(
            body=body,
            last_modified=last_modified or datetime.now(timezone.utc),
            checksums=checksums or {},
        )

    def check_bucket(self, bucket: str, operation: str) -> None:
        if bucket != self.bucket:
            raise client_error("NoSuchBucket", operation, "The specified bucket does not exist")

    def get_paginator(self, operation_name: str) -> FakePaginator:
        assert operation_name == "list_objects_v2"
        return FakePaginator(self)

    def upload_file(
        self,
        Filename: str,
        Bucket: str,
        Key: str,
        ExtraArgs: dict[str, Any] | None = None,
        Config: Any = None,
    ) -> None:
        extra_args = ExtraArgs or {}
        self.upload_calls.append({"Key": Key, "ExtraArgs": extra_args})
        if Key in self.upload_errors:
            raise self.upload_errors[Key]
        self.check_bucket(Bucket, "PutObject")

        body = Path(Filename).read_bytes()
        checksums = {}
        algorithm = extra_args.get("ChecksumAlgorithm")
        if algorithm:
            checksums[f"Checksum{algorithm}"] = fake_checksum(body, algorithm)
        self.objects[Key] = StoredObject(
            body=body,
            last_modified=datetime.now(timezone.utc),
            metadata=dict(extra_args.get("Metadata", {})),
            checksums=checksums,
            storage_class=extra_args.get("StorageClass"),
        )

    def head_object(self, Bucket: str, Key: str, ChecksumMode: str | None = None) -> dict[str, Any]:
        self.check_bucket(Bucket, "HeadObject")
        if Key in self.head_errors:
            raise self.head_errors[Key]
        if Key not in self.objects:
            raise client_error("404", "HeadObject", "Not Found")
        stored = self.objects[Key]
        response: dict[str, Any] = {
            "ContentLength": len(stored.body),
            "LastModified": stored.last_modified,
            "Metadata": stored.metadata,
        }
        if ChecksumMode == "ENABLED":
            response.update(stored.checksums)
        return response

    def download_file(self, Bucket: str, Key: str, Filename: str, Config: Any = None) -> None:
        self.check_bucket(Bucket, "GetObject")
        self.download_calls.append(Key)
        if Key not in self.objects:
            raise client_error("404", "HeadObject", "Not Found")
        body = self.objects[Key].body
        if Key in self.corrupt_downloads:
            body = body + b"corrupted"
        Path(Filename).write_bytes(body)

    def delete_objects(self, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        self.check_bucket(Bucket, "DeleteObjects")
        keys = [item["Key"] for item in Delete["Objects"]]
        self.delete_calls.append(keys)
        for key in keys:
            self.objects.pop(key, None)
        return {"Deleted": [{"Key": key} for key in keys]}


@pytest.fixture(autouse=True)
def _clear_metrics() -> Any:
    from simulator import metrics

    yield
    metrics.clear_metrics()


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def s3_client(fake_s3: FakeS3) -> S3Client:
    return S3Client(BUCKET, prefix=PREFIX, client=fake_s3, correlation_id="test-correlation")


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, source_dir: Path) -> SimulatorConfig:
    return SimulatorConfig(
        bucket_name=BUCKET,
        source_dir=source_dir,
        logs_dir=tmp_path / "logs",
    )


def write_files(root: Path, files: dict[str, bytes]) -> None:
    for relative_path, body in files.items():
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
