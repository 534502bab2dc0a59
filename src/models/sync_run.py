"""
Data models for synchronization runs
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.checksum_policy import ChecksumPolicy
from models.verification_result import VerificationOutcome


@dataclass
class ChecksumVerification:
    """
    Checksum section of the sync metadata record
    """
    enabled: bool
    algorithm: str
    server_side_checksums: bool
    verify_after_upload: bool
    verified: VerificationOutcome = VerificationOutcome.NOT_RUN
    checksum_file: Optional[str] = None
    verified_count: int = 0
    missing_count: int = 0
    errors: int = 0

    @classmethod
    def from_policy(cls, policy: ChecksumPolicy) -> 'ChecksumVerification':
        return cls(
            enabled=policy.enabled,
            algorithm=policy.algorithm.value,
            server_side_checksums=policy.server_side_enabled,
            verify_after_upload=policy.legacy_verify_enabled
        )


@dataclass
class TransferResult:
    """
    Represents the outcome of one mirror transfer
    """
    succeeded: bool = False
    digest_mismatch: bool = False
    cancelled: bool = False
    files_uploaded: int = 0
    files_skipped: int = 0
    files_deleted: int = 0
    object_count: Optional[int] = None
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error to the result"""
        self.errors.append(error)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


@dataclass
class SyncRun:
    """
    Represents one execution of the mirror operation
    """
    source: str
    destination: str
    checksum: ChecksumVerification
    started_at: datetime = field(default_factory=lambda: datetime.now().astimezone())
    finished_at: Optional[datetime] = None
    files_synced: int = 0
    source_size: str = '0B'
    s3_objects: Optional[int] = None
    files_uploaded: int = 0
    files_deleted: int = 0
    transfer_succeeded: bool = False
    digest_mismatch: bool = False
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error to the run"""
        self.errors.append(error)

    def finish(self) -> None:
        self.finished_at = datetime.now().astimezone()

    @property
    def duration_seconds(self) -> int:
        if self.finished_at is None:
            return 0
        return max(0, int((self.finished_at - self.started_at).total_seconds()))

    @property
    def succeeded(self) -> bool:
        """
        Overall run status

        Fails when the transfer failed, S3 reported a digest mismatch, or
        checksum verification ended in a failed state.
        """
        if not self.transfer_succeeded or self.digest_mismatch:
            return False
        return self.checksum.verified is not VerificationOutcome.FAILED

    @property
    def status(self) -> str:
        return 'success' if self.succeeded else 'failed'

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the last-sync.json document"""
        return {
            "timestamp": (self.finished_at or self.started_at).isoformat(timespec='seconds'),
            "duration_seconds": self.duration_seconds,
            "files_synced": self.files_synced,
            "source_size": self.source_size,
            "s3_objects": self.s3_objects,
            "status": self.status,
            "source": self.source,
            "destination": self.destination,
            "files_uploaded": self.files_uploaded,
            "files_deleted": self.files_deleted,
            "digest_mismatch": self.digest_mismatch,
            "errors": list(self.errors),
            "checksum_verification": {
                "enabled": self.checksum.enabled,
                "algorithm": self.checksum.algorithm,
                "server_side_checksums": self.checksum.server_side_checksums,
                "verify_after_upload": self.checksum.verify_after_upload,
                "verified": self.checksum.verified.value,
                "checksum_file": self.checksum.checksum_file,
                "verified_count": self.checksum.verified_count,
                "missing_count": self.checksum.missing_count,
                "errors": self.checksum.errors
            }
        }
