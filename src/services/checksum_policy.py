"""
Checksum policy selection
"""

from typing import Optional

from aws_lambda_powertools import Logger

from config import SimulatorConfig
from exceptions import ConfigurationError
from log_config import SERVICE_NAME
from models.checksum_policy import ChecksumAlgorithm, ChecksumPolicy, DEFAULT_ALGORITHM

logger = Logger(service=SERVICE_NAME, child=True)

# Aliases operators commonly type for the supported algorithms
_ALIASES = {
    'CRC64': ChecksumAlgorithm.CRC64NVME,
    'CRC-64NVME': ChecksumAlgorithm.CRC64NVME,
    'CRC-32C': ChecksumAlgorithm.CRC32C,
    'CRC-32': ChecksumAlgorithm.CRC32,
    'SHA-256': ChecksumAlgorithm.SHA256,
    'SHA-1': ChecksumAlgorithm.SHA1,
}


def normalize_algorithm(name: Optional[str], strict: bool = False) -> ChecksumAlgorithm:
    """
    Map a free-form algorithm name to the identifier S3 expects

    Args:
        name: Algorithm name, case-insensitive
        strict: Raise instead of falling back to the default on unknown names

    Returns:
        ChecksumAlgorithm: Normalized algorithm; NONE disables server-side checksums

    Raises:
        ConfigurationError: If the name is unknown and strict mode is on
    """
    candidate = (name or '').strip().upper()
    if not candidate:
        return DEFAULT_ALGORITHM

    try:
        return ChecksumAlgorithm(candidate)
    except ValueError:
        pass

    if candidate in _ALIASES:
        return _ALIASES[candidate]

    if strict:
        raise ConfigurationError(
            f"Unsupported checksum algorithm '{name}'. "
            f"Expected one of: {', '.join(a.value for a in ChecksumAlgorithm)}"
        )

    logger.warning("Unknown checksum algorithm, falling back to default", extra={
        "configured_algorithm": name,
        "fallback_algorithm": DEFAULT_ALGORITHM.value,
        "operation": "normalize_algorithm"
    })
    return DEFAULT_ALGORITHM


def select_policy(config: SimulatorConfig) -> ChecksumPolicy:
    """
    Derive the checksum policy for a run from configuration

    ENABLE_CHECKSUM_VERIFICATION is the master switch: when it is off the
    algorithm is NONE and legacy verification is disabled as well.
    """
    if not config.enable_checksum_verification:
        return ChecksumPolicy(algorithm=ChecksumAlgorithm.NONE, enabled=False, legacy_verify_enabled=False)

    algorithm = normalize_algorithm(config.checksum_algorithm, strict=config.checksum_strict)
    return ChecksumPolicy(
        algorithm=algorithm,
        enabled=True,
        legacy_verify_enabled=config.verify_after_upload
    )
