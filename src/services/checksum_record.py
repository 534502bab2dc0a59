"""
ChecksumRecord files for legacy download-based verification

One line per file, `<sha256 hex><two spaces><relative path>`, the format
`sha256sum -c` understands.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from aws_lambda_powertools import Logger

from log_config import SERVICE_NAME
from models.checksum_policy import LEGACY_HASH_NAME
from services.local_files import iter_local_files

logger = Logger(service=SERVICE_NAME, child=True)

RECORD_PREFIX = 'checksums-'
RECORD_TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'
_READ_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class ChecksumEntry:
    digest: str
    relative_path: str


def file_digest(path: Path) -> str:
    """Hex digest of a file using the legacy verification hash"""
    digest = hashlib.new(LEGACY_HASH_NAME)
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b''):
            digest.update(chunk)
    return digest.hexdigest()


def record_path(checksum_dir: Path, when: Optional[datetime] = None) -> Path:
    """Timestamped record path, e.g. checksums/checksums-20251016-143022.txt"""
    when = when or datetime.now()
    return Path(checksum_dir) / f"{RECORD_PREFIX}{when.strftime(RECORD_TIMESTAMP_FORMAT)}.txt"


def write_checksum_record(source_dir: Path, output_file: Path) -> int:
    """
    Hash every file under source_dir and write the record

    Returns:
        int: Number of files recorded
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Calculating checksums for all files", extra={
        "source_dir": str(source_dir),
        "algorithm": LEGACY_HASH_NAME,
        "operation": "write_checksum_record"
    })

    file_count = 0
    with open(output_file, 'w', encoding='utf-8') as out:
        for path, relative_path in iter_local_files(source_dir):
            try:
                digest = file_digest(path)
            except OSError as e:
                logger.warning("File vanished before it could be hashed, not recorded", extra={
                    "relative_path": relative_path,
                    "error_message": str(e),
                    "operation": "write_checksum_record"
                })
                continue
            out.write(f"{digest}  {relative_path}\n")
            file_count += 1

    logger.info("Checksum record written", extra={
        "checksum_file": str(output_file),
        "files_recorded": file_count,
        "operation": "write_checksum_record"
    })
    return file_count


def read_checksum_record(record_file: Path) -> List[ChecksumEntry]:
    """
    Parse a checksum record; malformed lines are logged and skipped
    """
    entries = []
    with open(record_file, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.rstrip('\n')
            if not line:
                continue
            digest, sep, relative_path = line.partition('  ')
            if not sep or not digest or not relative_path:
                logger.warning("Malformed checksum record line skipped", extra={
                    "checksum_file": str(record_file),
                    "line_number": line_num
                })
                continue
            entries.append(ChecksumEntry(digest=digest.lower(), relative_path=relative_path))
    return entries


def latest_checksum_record(checksum_dir: Path) -> Optional[Path]:
    """Most recent record in checksum_dir, or None if there are none"""
    checksum_dir = Path(checksum_dir)
    if not checksum_dir.is_dir():
        return None
    # Timestamped names sort chronologically
    records = sorted(checksum_dir.glob(f"{RECORD_PREFIX}*.txt"))
    return records[-1] if records else None
