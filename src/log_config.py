"""
Logging setup: structured JSON lines in a per-day file under LOGS_DIR
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional

from aws_lambda_powertools import Logger

SERVICE_NAME = 'datasync-simulator'
METRICS_NAMESPACE = 'DataSyncSimulator'


class DailyFileHandler(logging.FileHandler):
    """
    Append-only file handler writing to <prefix>-YYYYMMDD.log

    Switches to the new day's file on the first record after midnight, so a
    monitor running for days still gets one file per calendar day.
    """

    def __init__(self, log_dir: Path, prefix: str, encoding: str = 'utf-8'):
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.current_day = date.today()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        super().__init__(str(self._path_for(self.current_day)), mode='a', encoding=encoding)

    def _path_for(self, day: date) -> Path:
        return self.log_dir / f"{self.prefix}-{day.strftime('%Y%m%d')}.log"

    @property
    def current_path(self) -> Path:
        return Path(self.baseFilename)

    def emit(self, record: logging.LogRecord) -> None:
        today = date.today()
        if today != self.current_day:
            self.acquire()
            try:
                if self.stream is not None:
                    self.stream.close()
                    self.stream = None
                self.current_day = today
                self.baseFilename = str(self._path_for(today))
            finally:
                self.release()
        super().emit(record)


def setup_logging(log_dir: Path, prefix: str = 'sync', level: str = 'INFO',
                  handler: Optional[logging.Handler] = None) -> Logger:
    """
    Create the parent structured logger for this process

    Child loggers created with Logger(child=True) in every module propagate
    to it.

    Args:
        log_dir: Directory receiving the daily log files
        prefix: File name prefix, "sync" or "monitor"
        level: Log level name
        handler: Handler override, a DailyFileHandler by default

    Returns:
        Logger: Configured parent logger
    """
    return Logger(
        service=SERVICE_NAME,
        level=level,
        logger_handler=handler or DailyFileHandler(log_dir, prefix)
    )
