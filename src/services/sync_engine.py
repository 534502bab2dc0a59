"""
Synchronization engine mirroring a local directory to an S3 prefix
"""

import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from exceptions import ConfigurationError, DigestMismatchError, OperationCancelledError, S3OperationError
from log_config import METRICS_NAMESPACE, SERVICE_NAME
from models.checksum_policy import ChecksumPolicy
from models.s3_object import S3Object
from models.sync_run import TransferResult
from services.cancellation import CancellationToken
from services.local_files import iter_local_files

# Initialize structured logger and metrics
logger = Logger(service=SERVICE_NAME, child=True)
metrics = Metrics(namespace=METRICS_NAMESPACE, service=SERVICE_NAME)

SYNCED_BY = 'datasync-simulator'


class SyncEngine:
    """
    Mirror engine: uploads new or changed files and deletes extraneous objects
    so the destination ends up holding exactly the source's file set
    """

    def __init__(self, s3_client, correlation_id: Optional[str] = None):
        """
        Initialize sync engine

        Args:
            s3_client: S3 client bound to the destination bucket and prefix
            correlation_id: Request correlation ID for tracing
        """
        self.s3_client = s3_client
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def detect_changes(self, local_files: Dict[str, Path],
                       s3_objects: Dict[str, S3Object]) -> Tuple[List[str], List[str]]:
        """
        Compare local files with destination objects

        A file needs uploading when its key is absent, the sizes differ, or
        the local modification time is newer than the object's LastModified.

        Args:
            local_files: Relative path -> local file path
            s3_objects: Object key -> S3Object under the destination prefix

        Returns:
            tuple: (relative paths to upload, object keys to delete)
        """
        to_upload = []
        expected_keys = set()

        for relative_path, path in local_files.items():
            key = self.s3_client.object_key(relative_path)
            expected_keys.add(key)
            remote = s3_objects.get(key)

            if remote is None:
                to_upload.append(relative_path)
                logger.debug("New file detected", extra={
                    "correlation_id": self.correlation_id,
                    "relative_path": relative_path,
                    "change_type": "new"
                })
                continue

            try:
                stat = path.stat()
            except OSError as e:
                # Vanished since the listing; the upload attempt records the error
                logger.warning("Local file could not be read", extra={
                    "correlation_id": self.correlation_id,
                    "relative_path": relative_path,
                    "error_message": str(e)
                })
                to_upload.append(relative_path)
                continue
            local_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            remote_modified = remote.last_modified
            if remote_modified.tzinfo is None:
                remote_modified = remote_modified.replace(tzinfo=timezone.utc)

            if stat.st_size != remote.size or local_modified > remote_modified:
                to_upload.append(relative_path)
                logger.debug("Updated file detected", extra={
                    "correlation_id": self.correlation_id,
                    "relative_path": relative_path,
                    "change_type": "updated",
                    "local_size": stat.st_size,
                    "remote_size": remote.size
                })

        to_delete = sorted(key for key in s3_objects if key not in expected_keys)
        return to_upload, to_delete

    def sync(self, source_dir: Path, policy: ChecksumPolicy,
             token: Optional[CancellationToken] = None) -> TransferResult:
        """
        Mirror source_dir to the destination prefix

        Args:
            source_dir: Local directory to mirror
            policy: Checksum policy; server-side checksums are requested when enabled
            token: Cancellation token checked before every upload and delete batch

        Returns:
            TransferResult: Transfer status, counts and post-transfer object count

        Raises:
            ConfigurationError: If source_dir does not exist
        """
        source_dir = Path(source_dir)
        if not source_dir.is_dir():
            raise ConfigurationError(f"Source directory does not exist: {source_dir}")

        token = token or CancellationToken()
        checksum_algorithm = policy.algorithm if policy.server_side_enabled else None
        upload_metadata = {'synced-by': SYNCED_BY, 'timestamp': str(int(time.time()))}

        logger.info("Starting mirror transfer", extra={
            "correlation_id": self.correlation_id,
            "operation": "sync",
            "source_dir": str(source_dir),
            "destination": self.s3_client.destination,
            "checksum_algorithm": checksum_algorithm.value if checksum_algorithm else None
        })
        start_time = time.time()
        result = TransferResult()

        try:
            local_files = {relative: path for path, relative in iter_local_files(source_dir)}
            s3_objects = self.s3_client.list_objects()
            to_upload, to_delete = self.detect_changes(local_files, s3_objects)
            result.files_skipped = len(local_files) - len(to_upload)

            for i, relative_path in enumerate(to_upload, 1):
                token.raise_if_cancelled("Mirror transfer")
                key = self.s3_client.object_key(relative_path)
                try:
                    self.s3_client.upload_file(local_files[relative_path], key, upload_metadata,
                                               checksum_algorithm=checksum_algorithm)
                    result.files_uploaded += 1
                    logger.info("Uploaded file", extra={
                        "correlation_id": self.correlation_id,
                        "s3_key": key,
                        "progress": f"{i}/{len(to_upload)}"
                    })
                except DigestMismatchError as e:
                    # Corruption in transit, never a benign warning
                    result.digest_mismatch = True
                    result.add_error(str(e))
                except S3OperationError as e:
                    result.add_error(str(e))
                except OSError as e:
                    logger.error("Local file unavailable for upload", extra={
                        "correlation_id": self.correlation_id,
                        "relative_path": relative_path,
                        "error_type": type(e).__name__,
                        "error_message": str(e)
                    })
                    result.add_error(f"{relative_path}: {e.strerror or e}")

            if to_delete:
                token.raise_if_cancelled("Mirror transfer")
                try:
                    result.files_deleted = self.s3_client.delete_objects(to_delete)
                except S3OperationError as e:
                    result.add_error(str(e))

        except OperationCancelledError as e:
            logger.warning("Mirror transfer cancelled", extra={
                "correlation_id": self.correlation_id,
                "operation": "sync",
                "files_uploaded": result.files_uploaded,
                "reason": str(e)
            })
            result.cancelled = True
            result.add_error(str(e))
        except S3OperationError as e:
            result.add_error(str(e))

        result.duration_seconds = time.time() - start_time
        result.succeeded = not result.has_errors and not result.cancelled

        try:
            result.object_count = self.s3_client.count_objects()
        except S3OperationError as e:
            # Left as None so the run record does not report a false count
            logger.warning("Could not count destination objects", extra={
                "correlation_id": self.correlation_id,
                "error_message": str(e)
            })

        log = logger.info if result.succeeded else logger.error
        log("Mirror transfer completed", extra={
            "correlation_id": self.correlation_id,
            "operation": "sync",
            "succeeded": result.succeeded,
            "duration_seconds": round(result.duration_seconds, 2),
            "files_uploaded": result.files_uploaded,
            "files_skipped": result.files_skipped,
            "files_deleted": result.files_deleted,
            "object_count": result.object_count,
            "digest_mismatch": result.digest_mismatch,
            "error_count": len(result.errors)
        })

        metrics.add_metric(name="SyncDuration", unit=MetricUnit.Seconds, value=result.duration_seconds)
        metrics.add_metric(name="FilesUploaded", unit=MetricUnit.Count, value=result.files_uploaded)
        metrics.add_metric(name="FilesDeleted", unit=MetricUnit.Count, value=result.files_deleted)
        metrics.add_metric(name="TransferErrors", unit=MetricUnit.Count, value=len(result.errors))

        return result
