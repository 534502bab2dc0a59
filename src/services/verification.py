"""
Checksum verification strategies

MetadataVerifier reads the checksums S3 stored at upload time without
transferring any content. LegacyVerifier downloads every object listed in a
ChecksumRecord and re-hashes it locally, so its cost grows with total bytes.
"""

import tempfile
import time
import uuid
from pathlib import Path
from typing import Optional

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from exceptions import OperationCancelledError, S3OperationError
from log_config import METRICS_NAMESPACE, SERVICE_NAME
from models.checksum_policy import ChecksumAlgorithm
from models.verification_result import VerificationResult
from services.cancellation import CancellationToken
from services.checksum_record import file_digest, read_checksum_record

# Initialize structured logger and metrics
logger = Logger(service=SERVICE_NAME, child=True)
metrics = Metrics(namespace=METRICS_NAMESPACE, service=SERVICE_NAME)


class MetadataVerifier:
    """
    Verifies that every object under the destination prefix carries a stored checksum
    """

    def __init__(self, s3_client, correlation_id: Optional[str] = None):
        self.s3_client = s3_client
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def verify(self, algorithm: ChecksumAlgorithm,
               token: Optional[CancellationToken] = None) -> VerificationResult:
        """
        Query the stored checksum of every destination object

        Per object: verified when a checksum is returned, missing when the
        object has none (uploaded before checksums were enabled), error when
        the metadata request fails.

        Args:
            algorithm: Checksum algorithm whose value is expected
            token: Cancellation token checked before every request

        Returns:
            VerificationResult: Aggregate counts for this strategy
        """
        token = token or CancellationToken()
        result = VerificationResult(strategy='metadata')
        start_time = time.time()

        logger.info("Starting metadata checksum verification", extra={
            "correlation_id": self.correlation_id,
            "operation": "verify_metadata",
            "algorithm": algorithm.value,
            "destination": self.s3_client.destination
        })

        try:
            objects = self.s3_client.list_objects()
        except S3OperationError as e:
            result.add_error(f"Could not list destination objects: {e}")
            return result

        try:
            for key in sorted(objects):
                token.raise_if_cancelled("Metadata verification")
                try:
                    checksum = self.s3_client.get_object_checksum(key, algorithm)
                except S3OperationError as e:
                    logger.error("Checksum request failed", extra={
                        "correlation_id": self.correlation_id,
                        "s3_key": key,
                        "error_message": str(e)
                    })
                    result.add_error(f"{key}: {e}")
                    continue

                if checksum:
                    result.verified_count += 1
                    logger.debug("Checksum present", extra={
                        "correlation_id": self.correlation_id,
                        "s3_key": key,
                        "algorithm": algorithm.value,
                        "checksum": checksum
                    })
                else:
                    result.missing_count += 1
                    logger.warning("Object has no stored checksum", extra={
                        "correlation_id": self.correlation_id,
                        "s3_key": key,
                        "algorithm": algorithm.value
                    })
        except OperationCancelledError as e:
            result.cancelled = True
            logger.warning("Metadata verification cancelled", extra={
                "correlation_id": self.correlation_id,
                "objects_checked": result.total_checked,
                "objects_total": len(objects),
                "reason": str(e)
            })

        _log_summary(result, self.correlation_id, time.time() - start_time)
        return result


class LegacyVerifier:
    """
    Verifies uploads by downloading each object and comparing its SHA-256
    with a pre-upload ChecksumRecord
    """

    def __init__(self, s3_client, correlation_id: Optional[str] = None):
        self.s3_client = s3_client
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def verify(self, record_file: Path, token: Optional[CancellationToken] = None) -> VerificationResult:
        """
        Download and re-hash every file listed in record_file

        Scratch copies are removed right after each comparison, so disk usage
        is bounded by the largest single file.

        Args:
            record_file: ChecksumRecord written before the upload
            token: Cancellation token checked before every download

        Returns:
            VerificationResult: Aggregate counts; mismatches and failed downloads are errors
        """
        token = token or CancellationToken()
        result = VerificationResult(strategy='legacy')
        start_time = time.time()
        entries = read_checksum_record(record_file)

        logger.info("Starting download-based checksum verification", extra={
            "correlation_id": self.correlation_id,
            "operation": "verify_legacy",
            "checksum_file": str(record_file),
            "files_to_verify": len(entries)
        })

        with tempfile.TemporaryDirectory(prefix='datasync-verify-') as scratch_dir:
            try:
                for i, entry in enumerate(entries):
                    token.raise_if_cancelled("Legacy verification")
                    key = self.s3_client.object_key(entry.relative_path)
                    scratch_file = Path(scratch_dir) / f"{i}-{Path(entry.relative_path).name}"
                    try:
                        self.s3_client.download_file(key, scratch_file)
                        actual = file_digest(scratch_file)
                    except S3OperationError as e:
                        logger.warning("Failed to download object for verification", extra={
                            "correlation_id": self.correlation_id,
                            "s3_key": key,
                            "error_message": str(e)
                        })
                        result.add_error(f"{entry.relative_path}: failed to download from S3")
                        continue
                    finally:
                        scratch_file.unlink(missing_ok=True)

                    if actual == entry.digest:
                        result.verified_count += 1
                        logger.debug("Checksum verified", extra={
                            "correlation_id": self.correlation_id,
                            "relative_path": entry.relative_path
                        })
                    else:
                        logger.error("Checksum mismatch", extra={
                            "correlation_id": self.correlation_id,
                            "relative_path": entry.relative_path,
                            "expected": entry.digest,
                            "actual": actual
                        })
                        result.add_error(
                            f"{entry.relative_path}: checksum mismatch "
                            f"(expected {entry.digest}, actual {actual})"
                        )
            except OperationCancelledError as e:
                result.cancelled = True
                logger.warning("Legacy verification cancelled", extra={
                    "correlation_id": self.correlation_id,
                    "files_checked": result.total_checked,
                    "files_total": len(entries),
                    "reason": str(e)
                })

        _log_summary(result, self.correlation_id, time.time() - start_time)
        return result


def _log_summary(result: VerificationResult, correlation_id: str, duration: float) -> None:
    log = logger.info if result.error_count == 0 and not result.cancelled else logger.error
    log("Verification complete", extra={
        "correlation_id": correlation_id,
        "strategy": result.strategy,
        "outcome": result.outcome.value,
        "verified": result.verified_count,
        "missing": result.missing_count,
        "errors": result.error_count,
        "cancelled": result.cancelled,
        "duration_seconds": round(duration, 2)
    })
    metrics.add_metric(name="ObjectsVerified", unit=MetricUnit.Count, value=result.verified_count)
    metrics.add_metric(name="ChecksumsMissing", unit=MetricUnit.Count, value=result.missing_count)
    metrics.add_metric(name="VerificationErrors", unit=MetricUnit.Count, value=result.error_count)
    metrics.add_metric(name="VerificationDuration", unit=MetricUnit.Seconds, value=duration)
