"""
Configuration loading for the DataSync simulator

The configuration file is a flat list of KEY=VALUE declarations, the same
file the shell tooling used to `source`. It is parsed once into an immutable
SimulatorConfig that is handed to every component explicitly.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from aws_lambda_powertools import Logger

from exceptions import ConfigurationError
from log_config import SERVICE_NAME

logger = Logger(service=SERVICE_NAME, child=True)

DEFAULT_CONFIG_PATH = Path('~/datasync-config.env')

_TRUE_VALUES = {'true', 'yes', '1', 'on'}
_FALSE_VALUES = {'false', 'no', '0', 'off'}

_SIZE_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([kmgt](?:ib|b)?|b)?\s*(?:/s)?\s*$', re.IGNORECASE)
_SIZE_UNITS = {
    'b': 1,
    'kb': 1024, 'k': 1024, 'kib': 1024,
    'mb': 1024 ** 2, 'm': 1024 ** 2, 'mib': 1024 ** 2,
    'gb': 1024 ** 3, 'g': 1024 ** 3, 'gib': 1024 ** 3,
    'tb': 1024 ** 4, 't': 1024 ** 4, 'tib': 1024 ** 4,
}


def load_env_file(env_file: Path) -> Dict[str, str]:
    """
    Parse a KEY=VALUE environment file

    Args:
        env_file: Path to the configuration file

    Returns:
        dict: Raw key/value pairs with quotes stripped and $VARS expanded

    Raises:
        ConfigurationError: If the file does not exist
    """
    env_file = Path(os.path.expanduser(str(env_file)))
    if not env_file.is_file():
        raise ConfigurationError(f"Configuration file not found: {env_file}")

    values: Dict[str, str] = {}
    with open(env_file, 'r') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            if line.startswith('export '):
                line = line[len('export '):].lstrip()

            if '=' not in line:
                logger.warning("Invalid configuration line skipped", extra={
                    "config_file": str(env_file),
                    "line_number": line_num
                })
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            # Remove quotes if present
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                quoted_single = value[0] == "'"
                value = value[1:-1]
            else:
                quoted_single = False
                value = value.split(' #', 1)[0].rstrip()

            if not quoted_single:
                value = _expand(value, values)

            values[key] = value

    return values


def _expand(value: str, known: Dict[str, str]) -> str:
    """Expand $VAR, ${VAR} and a leading ~ the way a sourcing shell would"""
    def replace(match):
        name = match.group(1) or match.group(2)
        if name in known:
            return known[name]
        return os.environ.get(name, '')

    value = re.sub(r'\$\{(\w+)\}|\$(\w+)', replace, value)
    return os.path.expanduser(value)


def parse_bool(key: str, value: Optional[str], default: bool) -> bool:
    if value is None or value == '':
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got '{value}'")


def parse_int(key: str, value: Optional[str], default: int, minimum: int = 0) -> int:
    if value is None or value == '':
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{value}'")
    if parsed < minimum:
        raise ConfigurationError(f"{key} must be at least {minimum}, got {parsed}")
    return parsed


def parse_size(key: str, value: Optional[str], default: Optional[int]) -> Optional[int]:
    """
    Parse a byte size such as 8388608, 8MB, 16MiB or 50MB/s
    """
    if value is None or value == '':
        return default
    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ConfigurationError(f"{key} must be a size like 8MB, got '{value}'")
    number, unit = match.groups()
    multiplier = _SIZE_UNITS[(unit or 'b').lower()]
    return int(float(number) * multiplier)


@dataclass(frozen=True)
class SimulatorConfig:
    """
    Immutable configuration for one simulator process
    """
    bucket_name: str
    source_dir: Path
    logs_dir: Path
    s3_subdirectory: str = 'datasync-test'
    aws_profile: Optional[str] = None
    aws_region: str = 'us-east-1'
    enable_checksum_verification: bool = True
    checksum_algorithm: str = 'CRC64NVME'
    checksum_strict: bool = False
    verify_after_upload: bool = False
    check_interval: int = 30
    storage_class: str = 'INTELLIGENT_TIERING'
    max_concurrent_requests: int = 10
    multipart_threshold: int = 8 * 1024 * 1024
    multipart_chunksize: int = 8 * 1024 * 1024
    max_bandwidth: Optional[int] = None
    max_attempts: int = 5
    sync_timeout_seconds: int = 0
    verify_timeout_seconds: int = 0
    log_level: str = 'INFO'
    emit_metrics: bool = False

    @property
    def s3_prefix(self) -> str:
        """Destination key prefix, always ending with a slash unless empty"""
        prefix = self.s3_subdirectory.strip('/')
        return f"{prefix}/" if prefix else ''

    @property
    def s3_destination(self) -> str:
        return f"s3://{self.bucket_name}/{self.s3_prefix}"

    @property
    def checksum_dir(self) -> Path:
        return self.logs_dir / 'checksums'

    @property
    def last_sync_file(self) -> Path:
        return self.logs_dir / 'last-sync.json'

    @property
    def sync_lock_file(self) -> Path:
        return self.logs_dir / 'sync.lock'

    @property
    def monitor_lock_file(self) -> Path:
        return self.logs_dir / 'monitor.lock'

    @classmethod
    def from_mapping(cls, values: Dict[str, str]) -> 'SimulatorConfig':
        """
        Build configuration from raw key/value pairs

        Raises:
            ConfigurationError: If a required key is missing or a value is malformed
        """
        bucket_name = values.get('BUCKET_NAME', '').strip()
        if not bucket_name:
            raise ConfigurationError("BUCKET_NAME is required")

        home = Path.home()
        source_dir = values.get('SOURCE_DIR') or str(home / 'datasync-test' / 'source')
        logs_dir = values.get('LOGS_DIR') or str(home / 'datasync-test' / 'logs')
        check_interval = values.get('MONITOR_CHECK_INTERVAL') or values.get('CHECK_INTERVAL')

        return cls(
            bucket_name=bucket_name,
            source_dir=Path(source_dir),
            logs_dir=Path(logs_dir),
            s3_subdirectory=values.get('S3_SUBDIRECTORY', 'datasync-test'),
            aws_profile=values.get('AWS_PROFILE') or None,
            aws_region=values.get('AWS_REGION') or 'us-east-1',
            enable_checksum_verification=parse_bool(
                'ENABLE_CHECKSUM_VERIFICATION', values.get('ENABLE_CHECKSUM_VERIFICATION'), True),
            checksum_algorithm=values.get('CHECKSUM_ALGORITHM') or 'CRC64NVME',
            checksum_strict=parse_bool('CHECKSUM_STRICT', values.get('CHECKSUM_STRICT'), False),
            verify_after_upload=parse_bool('VERIFY_AFTER_UPLOAD', values.get('VERIFY_AFTER_UPLOAD'), False),
            check_interval=parse_int('MONITOR_CHECK_INTERVAL', check_interval, 30, minimum=1),
            storage_class=values.get('STORAGE_CLASS') or 'INTELLIGENT_TIERING',
            max_concurrent_requests=parse_int(
                'MAX_CONCURRENT_REQUESTS', values.get('MAX_CONCURRENT_REQUESTS'), 10, minimum=1),
            multipart_threshold=parse_size(
                'MULTIPART_THRESHOLD', values.get('MULTIPART_THRESHOLD'), 8 * 1024 * 1024),
            multipart_chunksize=parse_size(
                'MULTIPART_CHUNKSIZE', values.get('MULTIPART_CHUNKSIZE'), 8 * 1024 * 1024),
            max_bandwidth=parse_size('MAX_BANDWIDTH', values.get('MAX_BANDWIDTH'), None),
            max_attempts=parse_int('MAX_ATTEMPTS', values.get('MAX_ATTEMPTS'), 5, minimum=1),
            sync_timeout_seconds=parse_int('SYNC_TIMEOUT_SECONDS', values.get('SYNC_TIMEOUT_SECONDS'), 0),
            verify_timeout_seconds=parse_int(
                'VERIFY_TIMEOUT_SECONDS', values.get('VERIFY_TIMEOUT_SECONDS'), 0),
            log_level=(values.get('LOG_LEVEL') or 'INFO').upper(),
            emit_metrics=parse_bool('EMIT_METRICS', values.get('EMIT_METRICS'), False)
        )


def load_config(config_path: Optional[Path] = None) -> SimulatorConfig:
    """
    Load simulator configuration, failing fast if the file is absent

    Args:
        config_path: Configuration file path, defaults to ~/datasync-config.env

    Returns:
        SimulatorConfig: Parsed configuration
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    values = load_env_file(path)
    config = SimulatorConfig.from_mapping(values)

    logger.debug("Configuration loaded", extra={
        "config_file": str(path),
        "bucket_name": config.bucket_name,
        "source_dir": str(config.source_dir),
        "region": config.aws_region
    })
    return config
