"""
Persistence of the last sync run for status reporting
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from log_config import SERVICE_NAME
from models.sync_run import SyncRun

logger = Logger(service=SERVICE_NAME, child=True)


def write_last_sync(run: SyncRun, path: Path) -> Path:
    """
    Overwrite the last-sync record with this run

    The document is written to a temporary file and renamed into place so
    readers never see a half-written record.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    document = run.to_dict()

    fd, tmp_name = tempfile.mkstemp(prefix='.last-sync-', suffix='.json', dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=4)
            f.write('\n')
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Sync metadata saved", extra={
        "metadata_file": str(path),
        "status": document["status"],
        "verified": document["checksum_verification"]["verified"]
    })
    return path


def read_last_sync(path: Path) -> Optional[Dict[str, Any]]:
    """Load the last-sync record, None if no sync has been recorded"""
    path = Path(path)
    if not path.is_file():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Last sync record is not valid JSON", extra={
            "metadata_file": str(path),
            "error_message": str(e)
        })
        return None
