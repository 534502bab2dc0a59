"""
DataSync simulator run orchestration

One run:
1. Derive the checksum policy from configuration
2. Take the sync lock so runs never overlap
3. Snapshot the source and, for legacy verification, write a ChecksumRecord
4. Mirror the source to S3
5. Verify checksums (metadata and/or legacy strategy) if the transfer succeeded
6. Write last-sync.json and return the SyncRun
"""

import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from boto3.s3.transfer import TransferConfig

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from clients.s3_client import S3Client
from config import SimulatorConfig
from console import print_error, print_header, print_info, print_success, print_warning
from exceptions import ConfigurationError, S3OperationError
from log_config import METRICS_NAMESPACE, SERVICE_NAME
from models.checksum_policy import ChecksumPolicy
from models.sync_run import ChecksumVerification, SyncRun
from models.verification_result import VerificationOutcome, VerificationResult, combine_outcomes
from services.cancellation import CancellationToken
from services.checksum_policy import select_policy
from services.checksum_record import record_path, write_checksum_record
from services.local_files import snapshot_directory
from services.metadata_recorder import read_last_sync, write_last_sync
from services.sync_engine import SyncEngine
from services.sync_lock import SyncLock
from services.verification import LegacyVerifier, MetadataVerifier

logger = Logger(service=SERVICE_NAME, child=True)
metrics = Metrics(namespace=METRICS_NAMESPACE, service=SERVICE_NAME)


def build_s3_client(config: SimulatorConfig, correlation_id: Optional[str] = None) -> S3Client:
    """
    Create the S3 client with transfer tuning from configuration
    """
    transfer_config = TransferConfig(
        max_concurrency=config.max_concurrent_requests,
        multipart_threshold=config.multipart_threshold,
        multipart_chunksize=config.multipart_chunksize,
        max_bandwidth=config.max_bandwidth
    )
    return S3Client(
        bucket_name=config.bucket_name,
        prefix=config.s3_prefix,
        region_name=config.aws_region,
        profile_name=config.aws_profile,
        max_attempts=config.max_attempts,
        transfer_config=transfer_config,
        storage_class=config.storage_class,
        correlation_id=correlation_id
    )


def publish_metrics(config: SimulatorConfig) -> None:
    """Emit accumulated metrics as EMF when enabled, otherwise discard them"""
    if config.emit_metrics:
        metrics.flush_metrics()
    else:
        metrics.clear_metrics()


def verify_upload(s3_client, policy: ChecksumPolicy, record_file: Optional[Path],
                  token: CancellationToken, correlation_id: str) -> List[VerificationResult]:
    """
    Run every verification strategy the policy enables

    Metadata verification runs whenever server-side checksums are on; legacy
    verification runs when enabled and a ChecksumRecord exists. Both can run
    in the same sync during a migration window.
    """
    results = []

    if policy.server_side_enabled:
        print_info(f"Verifying stored {policy.algorithm.value} checksums via object metadata...")
        results.append(MetadataVerifier(s3_client, correlation_id).verify(policy.algorithm, token))

    if policy.legacy_verify_enabled:
        if record_file is not None and Path(record_file).is_file():
            print_warning("Download-based verification enabled; every object will be re-downloaded")
            results.append(LegacyVerifier(s3_client, correlation_id).verify(record_file, token))
        else:
            logger.warning("Legacy verification enabled but no checksum record exists", extra={
                "correlation_id": correlation_id,
                "checksum_file": str(record_file) if record_file else None
            })

    return results


def run_sync(config: SimulatorConfig, token: Optional[CancellationToken] = None,
             s3_client=None, correlation_id: Optional[str] = None) -> SyncRun:
    """
    Execute one lock-guarded sync run

    Args:
        config: Simulator configuration
        token: Root cancellation token
        s3_client: S3 client override, built from configuration if None
        correlation_id: Request correlation ID for tracing

    Returns:
        SyncRun: Fully populated run, already written to last-sync.json

    Raises:
        ConfigurationError: If the source directory is missing or the algorithm is invalid in strict mode
        SyncInProgressError: If another run holds the sync lock
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    token = token or CancellationToken()
    policy = select_policy(config)

    with SyncLock(config.sync_lock_file):
        return _run_locked(config, policy, token, s3_client, correlation_id)


def _run_locked(config: SimulatorConfig, policy: ChecksumPolicy, token: CancellationToken,
                s3_client, correlation_id: str) -> SyncRun:
    print_header("DataSync Simulator Starting")
    print_info(f"Source: {config.source_dir}")
    print_info(f"Destination: {config.s3_destination}")
    print_info(f"Region: {config.aws_region}")
    print_info(f"Checksum algorithm: {policy.algorithm.value} "
               f"(server-side: {policy.server_side_enabled}, verify after upload: {policy.legacy_verify_enabled})")

    logger.info("Starting sync run", extra={
        "correlation_id": correlation_id,
        "source_dir": str(config.source_dir),
        "destination": config.s3_destination,
        "checksum_algorithm": policy.algorithm.value,
        "server_side_checksums": policy.server_side_enabled,
        "verify_after_upload": policy.legacy_verify_enabled
    })

    if not config.source_dir.is_dir():
        print_error(f"Source directory does not exist: {config.source_dir}")
        raise ConfigurationError(f"Source directory does not exist: {config.source_dir}")

    run = SyncRun(
        source=str(config.source_dir),
        destination=config.s3_destination,
        checksum=ChecksumVerification.from_policy(policy)
    )

    snapshot = snapshot_directory(config.source_dir)
    run.files_synced = snapshot.file_count
    run.source_size = snapshot.total_size
    print_info(f"Files to sync: {snapshot.file_count} files ({snapshot.total_size})")

    record_file = None
    if policy.legacy_verify_enabled and snapshot.file_count > 0:
        record_file = record_path(config.checksum_dir)
        write_checksum_record(config.source_dir, record_file)
        run.checksum.checksum_file = str(record_file)
        print_info(f"Checksums saved to: {record_file}")

    s3_client = s3_client or build_s3_client(config, correlation_id)
    engine = SyncEngine(s3_client, correlation_id)

    print_info("Starting sync operation...")
    transfer = engine.sync(config.source_dir, policy, token.with_timeout(config.sync_timeout_seconds))

    run.transfer_succeeded = transfer.succeeded
    run.digest_mismatch = transfer.digest_mismatch
    run.s3_objects = transfer.object_count
    run.files_uploaded = transfer.files_uploaded
    run.files_deleted = transfer.files_deleted
    for error in transfer.errors:
        run.add_error(error)

    if transfer.succeeded:
        print_success(f"Sync completed: {transfer.files_uploaded} uploaded, "
                      f"{transfer.files_deleted} deleted, {transfer.files_skipped} unchanged")
    elif transfer.digest_mismatch:
        print_error("Sync failed: S3 rejected one or more uploads with a checksum mismatch")
    else:
        print_error(f"Sync failed with {len(transfer.errors)} errors")
    if transfer.object_count is None:
        print_warning("Objects in S3: unavailable")
    else:
        print_info(f"Objects in S3: {transfer.object_count}")

    if transfer.succeeded:
        results = verify_upload(s3_client, policy, record_file,
                                token.with_timeout(config.verify_timeout_seconds), correlation_id)
        _apply_verification(run, results)
    elif policy.server_side_enabled or policy.legacy_verify_enabled:
        print_warning("Checksum verification skipped because the transfer failed")

    run.finish()
    write_last_sync(run, config.last_sync_file)

    metrics.add_metric(name="SyncRuns", unit=MetricUnit.Count, value=1)
    metrics.add_metric(name="SyncRunFailures", unit=MetricUnit.Count, value=0 if run.succeeded else 1)
    publish_metrics(config)

    log = logger.info if run.succeeded else logger.error
    log("Sync run finished", extra={
        "correlation_id": correlation_id,
        "status": run.status,
        "duration_seconds": run.duration_seconds,
        "files_synced": run.files_synced,
        "s3_objects": run.s3_objects,
        "verified": run.checksum.verified.value,
        "checksum_errors": run.checksum.errors
    })

    print_info(f"Duration: {run.duration_seconds} seconds")
    print_info(f"Sync metadata saved to: {config.last_sync_file}")
    if run.succeeded:
        print_success("Run completed successfully")
    else:
        print_error("Run failed")
    return run


def _apply_verification(run: SyncRun, results: List[VerificationResult]) -> None:
    if not results:
        return

    run.checksum.verified = combine_outcomes(results)
    run.checksum.verified_count = sum(r.verified_count for r in results)
    run.checksum.missing_count = sum(r.missing_count for r in results)
    run.checksum.errors = sum(r.error_count for r in results)

    outcome = run.checksum.verified
    if outcome is VerificationOutcome.VERIFIED:
        print_success(f"All checksums verified ({run.checksum.verified_count} objects)")
    elif outcome is VerificationOutcome.PARTIAL:
        print_warning(f"{run.checksum.missing_count} objects have no stored checksum "
                      f"(uploaded before checksums were enabled?)")
    else:
        cancelled = any(r.cancelled for r in results)
        print_error(f"Checksum verification failed with {run.checksum.errors} errors"
                    + (" (verification cancelled)" if cancelled else ""))


def run_verification(config: SimulatorConfig, record_file: Optional[Path] = None, metadata: bool = False,
                     token: Optional[CancellationToken] = None, s3_client=None,
                     correlation_id: Optional[str] = None) -> VerificationResult:
    """
    Stand-alone verification of the destination outside a sync run

    Args:
        config: Simulator configuration
        record_file: ChecksumRecord for legacy verification
        metadata: Run metadata verification instead of the legacy strategy
        token: Cancellation token
        s3_client: S3 client override
        correlation_id: Request correlation ID for tracing
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    token = (token or CancellationToken()).with_timeout(config.verify_timeout_seconds)
    s3_client = s3_client or build_s3_client(config, correlation_id)

    if metadata:
        policy = select_policy(config)
        if not policy.server_side_enabled:
            raise ConfigurationError("Metadata verification needs a checksum algorithm other than NONE")
        result = MetadataVerifier(s3_client, correlation_id).verify(policy.algorithm, token)
    else:
        if record_file is None or not Path(record_file).is_file():
            raise ConfigurationError(f"Checksum file not found: {record_file}")
        result = LegacyVerifier(s3_client, correlation_id).verify(record_file, token)

    publish_metrics(config)
    return result


def collect_status(config: SimulatorConfig, s3_client=None) -> Dict[str, Any]:
    """
    Gather monitor/sync state, source statistics and the last sync summary
    """
    start_time = time.time()
    monitor_lock = SyncLock(config.monitor_lock_file, name='monitor')
    sync_lock = SyncLock(config.sync_lock_file)

    status: Dict[str, Any] = {
        "monitor_pid": monitor_lock.holder_pid(),
        "monitor_running": monitor_lock.is_locked(),
        "sync_in_progress": sync_lock.is_locked(),
        "source_dir": str(config.source_dir),
        "source_exists": config.source_dir.is_dir(),
        "destination": config.s3_destination,
        "last_sync": read_last_sync(config.last_sync_file),
    }

    if status["source_exists"]:
        snapshot = snapshot_directory(config.source_dir)
        status["source_files"] = snapshot.file_count
        status["source_size"] = snapshot.total_size

    try:
        s3_client = s3_client or build_s3_client(config)
        status["s3_objects"] = s3_client.count_objects()
    except S3OperationError as e:
        status["s3_objects"] = None
        status["s3_error"] = str(e)

    logger.debug("Status collected", extra={"duration_seconds": round(time.time() - start_time, 3)})
    return status
