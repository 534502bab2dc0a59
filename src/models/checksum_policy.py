"""
Data models for checksum configuration
"""

from dataclasses import dataclass
from enum import Enum


class ChecksumAlgorithm(str, Enum):
    """
    Checksum algorithms accepted by S3 for server-side checksums
    """
    CRC64NVME = 'CRC64NVME'
    CRC32C = 'CRC32C'
    CRC32 = 'CRC32'
    SHA256 = 'SHA256'
    SHA1 = 'SHA1'
    NONE = 'NONE'

    @property
    def response_field(self) -> str:
        """Name of the head_object response field carrying this checksum"""
        return f"Checksum{self.value}"


DEFAULT_ALGORITHM = ChecksumAlgorithm.CRC64NVME

# Legacy verification always compares SHA-256 digests computed locally
LEGACY_HASH_NAME = 'sha256'


@dataclass(frozen=True)
class ChecksumPolicy:
    """
    Checksum behaviour for a single sync run
    """
    algorithm: ChecksumAlgorithm
    enabled: bool
    legacy_verify_enabled: bool

    @property
    def server_side_enabled(self) -> bool:
        """Check if S3 should compute and store checksums during upload"""
        return self.enabled and self.algorithm is not ChecksumAlgorithm.NONE
