"""
AWS S3 client interface
"""

import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, FlexibleChecksumError

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from exceptions import DigestMismatchError, S3OperationError
from log_config import METRICS_NAMESPACE, SERVICE_NAME
from models.checksum_policy import ChecksumAlgorithm
from models.s3_object import S3Object

# Initialize structured logger and metrics
logger = Logger(service=SERVICE_NAME, child=True)
metrics = Metrics(namespace=METRICS_NAMESPACE, service=SERVICE_NAME)

# Error codes S3 uses when the bytes it received do not match the declared checksum
DIGEST_MISMATCH_CODES = ('BadDigest', 'InvalidDigest', 'XAmzContentSHA256Mismatch')

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000


def is_digest_mismatch(error: Exception) -> bool:
    """Check if an upload error is S3 rejecting the payload checksum"""
    if isinstance(error, FlexibleChecksumError):
        return True
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code') in DIGEST_MISMATCH_CODES
    # upload_file wraps the service error text in S3UploadFailedError
    message = str(error)
    return any(f"({code})" in message for code in DIGEST_MISMATCH_CODES)


class S3ClientInterface(ABC):
    """
    Interface for AWS S3 operations under a destination prefix
    """

    @abstractmethod
    def list_objects(self) -> Dict[str, S3Object]:
        """
        List all objects under the destination prefix

        Returns:
            dict: Mapping of object keys to S3Object
        """
        pass

    @abstractmethod
    def upload_file(self, path: Path, key: str, metadata: Dict,
                    checksum_algorithm: Optional[ChecksumAlgorithm] = None) -> None:
        """
        Upload a local file with metadata and an optional server-side checksum
        """
        pass

    @abstractmethod
    def delete_objects(self, keys: Iterable[str]) -> int:
        """
        Delete objects, returning the number deleted
        """
        pass

    @abstractmethod
    def get_object_checksum(self, key: str, algorithm: ChecksumAlgorithm) -> Optional[str]:
        """
        Retrieve the stored checksum of an object without downloading it
        """
        pass

    @abstractmethod
    def download_file(self, key: str, destination: Path) -> None:
        """
        Download an object to a local path
        """
        pass


class S3Client(S3ClientInterface):
    """
    AWS S3 client implementation with structured logging and metrics
    """

    def __init__(self, bucket_name: str, prefix: str = '', region_name: str = 'us-east-1',
                 profile_name: Optional[str] = None, max_attempts: int = 5,
                 transfer_config: Optional[TransferConfig] = None, storage_class: Optional[str] = None,
                 correlation_id: Optional[str] = None, client=None):
        """
        Initialize S3 client

        Args:
            bucket_name: S3 bucket name
            prefix: Destination key prefix ("datasync-test/")
            region_name: AWS region name
            profile_name: Named AWS credentials profile, default chain if None
            max_attempts: Total attempts per request including retries
            transfer_config: Concurrency and multipart tuning for uploads
            storage_class: Storage class applied to uploaded objects
            correlation_id: Request correlation ID for tracing
            client: Pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name
        self.prefix = prefix
        self.region_name = region_name
        self.storage_class = storage_class
        self.transfer_config = transfer_config or TransferConfig()
        self.correlation_id = correlation_id or str(uuid.uuid4())

        if client is None:
            try:
                session = boto3.Session(profile_name=profile_name, region_name=region_name)
                client = session.client(
                    's3',
                    config=Config(retries={"max_attempts": max_attempts, "mode": "standard"})
                )
            except BotoCoreError as e:
                logger.error("Failed to initialize S3 client", extra={
                    "correlation_id": self.correlation_id,
                    "profile": profile_name,
                    "region": region_name,
                    "error_message": str(e)
                })
                raise S3OperationError(f"Failed to initialize S3 client: {str(e)}") from e
        self._s3_client = client

    @property
    def destination(self) -> str:
        return f"s3://{self.bucket_name}/{self.prefix}"

    def object_key(self, relative_path: str) -> str:
        """S3 key for a path relative to the source directory"""
        return f"{self.prefix}{relative_path}"

    def list_objects(self) -> Dict[str, S3Object]:
        """
        List all objects under the destination prefix
        Handles pagination for prefixes with more than 1000 objects

        Returns:
            dict: Mapping of object keys to S3Object

        Raises:
            S3OperationError: If S3 operation fails
        """
        logger.debug("Starting S3 object listing", extra={
            "correlation_id": self.correlation_id,
            "bucket_name": self.bucket_name,
            "prefix": self.prefix,
            "operation": "list_objects"
        })
        start_time = time.time()
        objects = {}
        pages_processed = 0

        try:
            paginator = self._s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                pages_processed += 1
                for obj in page.get('Contents', []):
                    objects[obj['Key']] = S3Object(
                        key=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj.get('Size', 0),
                        etag=obj.get('ETag', '').strip('"')
                    )
        except ClientError as e:
            self._log_client_error(e, "list_objects", start_time)
            metrics.add_metric(name="S3ListObjectsErrors", unit=MetricUnit.Count, value=1)
            raise self._translate(e, f"Failed to list objects in '{self.destination}'")
        except BotoCoreError as e:
            self._log_botocore_error(e, "list_objects", start_time)
            metrics.add_metric(name="S3ListObjectsErrors", unit=MetricUnit.Count, value=1)
            raise S3OperationError(f"AWS service error while listing objects: {str(e)}") from e

        duration = time.time() - start_time
        logger.info("S3 object listing completed", extra={
            "correlation_id": self.correlation_id,
            "bucket_name": self.bucket_name,
            "prefix": self.prefix,
            "operation": "list_objects",
            "duration_seconds": round(duration, 3),
            "objects_found": len(objects),
            "pages_processed": pages_processed
        })
        metrics.add_metric(name="S3ListObjectsDuration", unit=MetricUnit.Seconds, value=duration)
        return objects

    def count_objects(self) -> int:
        return len(self.list_objects())

    def upload_file(self, path: Path, key: str, metadata: Dict,
                    checksum_algorithm: Optional[ChecksumAlgorithm] = None) -> None:
        """
        Upload a local file with metadata through the managed transfer layer

        Args:
            path: Local file path
            key: S3 object key
            metadata: User metadata, values are converted to strings
            checksum_algorithm: Ask S3 to compute and store this checksum, None to skip

        Raises:
            DigestMismatchError: If S3 rejected the payload checksum
            S3OperationError: If the upload fails for any other reason
        """
        extra_args = {'Metadata': {k: str(v) for k, v in metadata.items()}}
        if self.storage_class:
            extra_args['StorageClass'] = self.storage_class
        if checksum_algorithm is not None and checksum_algorithm is not ChecksumAlgorithm.NONE:
            extra_args['ChecksumAlgorithm'] = checksum_algorithm.value

        start_time = time.time()
        try:
            self._s3_client.upload_file(
                Filename=str(path),
                Bucket=self.bucket_name,
                Key=key,
                ExtraArgs=extra_args,
                Config=self.transfer_config
            )
        except (S3UploadFailedError, ClientError, FlexibleChecksumError) as e:
            duration = time.time() - start_time
            if is_digest_mismatch(e):
                logger.error("S3 rejected upload due to checksum mismatch", extra={
                    "correlation_id": self.correlation_id,
                    "s3_key": key,
                    "checksum_algorithm": extra_args.get('ChecksumAlgorithm'),
                    "error_message": str(e),
                    "upload_duration_seconds": round(duration, 3),
                    "operation": "upload_file"
                })
                raise DigestMismatchError(f"Digest mismatch uploading '{key}': {str(e)}") from e
            logger.error("S3 error during file upload", extra={
                "correlation_id": self.correlation_id,
                "s3_key": key,
                "error_type": type(e).__name__,
                "error_message": str(e),
                "upload_duration_seconds": round(duration, 3),
                "operation": "upload_file"
            })
            raise S3OperationError(f"Failed to upload '{path}' to '{key}': {str(e)}") from e
        except BotoCoreError as e:
            self._log_botocore_error(e, "upload_file", start_time, key)
            raise S3OperationError(f"AWS service error while uploading '{key}': {str(e)}") from e

        logger.debug("S3 file upload successful", extra={
            "correlation_id": self.correlation_id,
            "s3_key": key,
            "upload_duration_seconds": round(time.time() - start_time, 3),
            "operation": "upload_file"
        })

    def delete_objects(self, keys: Iterable[str]) -> int:
        """
        Delete objects in batches of up to 1000 keys

        Raises:
            S3OperationError: If any batch fails or reports per-key errors
        """
        keys = list(keys)
        deleted = 0
        start_time = time.time()

        for offset in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[offset:offset + DELETE_BATCH_SIZE]
            try:
                response = self._s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
            except ClientError as e:
                self._log_client_error(e, "delete_objects", start_time)
                raise self._translate(e, f"Failed to delete {len(batch)} objects")
            except BotoCoreError as e:
                self._log_botocore_error(e, "delete_objects", start_time)
                raise S3OperationError(f"AWS service error while deleting objects: {str(e)}") from e

            errors = response.get('Errors', [])
            if errors:
                logger.error("S3 reported errors deleting objects", extra={
                    "correlation_id": self.correlation_id,
                    "failed_keys": [err.get('Key') for err in errors],
                    "operation": "delete_objects"
                })
                raise S3OperationError(
                    f"Failed to delete {len(errors)} objects, first: "
                    f"{errors[0].get('Key')} ({errors[0].get('Code')})"
                )
            deleted += len(batch)

        if deleted:
            logger.info("Deleted extraneous S3 objects", extra={
                "correlation_id": self.correlation_id,
                "objects_deleted": deleted,
                "duration_seconds": round(time.time() - start_time, 3),
                "operation": "delete_objects"
            })
        return deleted

    def get_object_checksum(self, key: str, algorithm: ChecksumAlgorithm) -> Optional[str]:
        """
        Retrieve the stored checksum of an object via HeadObject

        Args:
            key: S3 object key
            algorithm: Algorithm whose checksum field should be returned

        Returns:
            str: Checksum value, or None if the object carries no such checksum

        Raises:
            S3OperationError: If the metadata request fails
        """
        try:
            response = self._s3_client.head_object(
                Bucket=self.bucket_name,
                Key=key,
                ChecksumMode='ENABLED'
            )
        except ClientError as e:
            raise self._translate(e, f"Failed to read checksum of '{key}'")
        except BotoCoreError as e:
            raise S3OperationError(f"AWS service error while reading '{key}': {str(e)}") from e

        return response.get(algorithm.response_field) or None

    def download_file(self, key: str, destination: Path) -> None:
        """
        Download an object to a local path

        Raises:
            S3OperationError: If the object is missing or cannot be read
        """
        try:
            self._s3_client.download_file(
                Bucket=self.bucket_name,
                Key=key,
                Filename=str(destination),
                Config=self.transfer_config
            )
        except ClientError as e:
            raise self._translate(e, f"Failed to download '{key}'")
        except BotoCoreError as e:
            raise S3OperationError(f"AWS service error while downloading '{key}': {str(e)}") from e

    def _translate(self, error: ClientError, message: str) -> S3OperationError:
        error_code = error.response.get('Error', {}).get('Code')
        if error_code == 'NoSuchBucket':
            translated = S3OperationError(f"Bucket '{self.bucket_name}' does not exist")
        elif error_code in ('AccessDenied', '403'):
            translated = S3OperationError(f"Access denied to bucket '{self.bucket_name}'")
        elif error_code in ('NoSuchKey', '404', 'NotFound'):
            translated = S3OperationError(f"{message}: object not found")
        else:
            translated = S3OperationError(f"{message}: {str(error)}")
        translated.__cause__ = error
        return translated

    def _log_client_error(self, error: ClientError, operation: str, start_time: float) -> None:
        logger.error("S3 client error", extra={
            "correlation_id": self.correlation_id,
            "bucket_name": self.bucket_name,
            "operation": operation,
            "error_code": error.response.get('Error', {}).get('Code'),
            "error_message": str(error),
            "duration_seconds": round(time.time() - start_time, 3)
        })

    def _log_botocore_error(self, error: BotoCoreError, operation: str, start_time: float,
                            key: Optional[str] = None) -> None:
        logger.error("AWS service error", extra={
            "correlation_id": self.correlation_id,
            "bucket_name": self.bucket_name,
            "s3_key": key,
            "operation": operation,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "duration_seconds": round(time.time() - start_time, 3)
        })
