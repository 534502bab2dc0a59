"""
Hot folder monitor: polls a directory and triggers a sync on change
"""

import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from aws_lambda_powertools import Logger

from exceptions import DataSyncError, SyncInProgressError
from log_config import SERVICE_NAME
from models.directory_snapshot import DirectorySnapshot
from services.cancellation import CancellationToken
from services.local_files import snapshot_directory

logger = Logger(service=SERVICE_NAME, child=True)


class MonitorState(str, Enum):
    IDLE = 'idle'
    SYNCING = 'syncing'


class CycleResult(str, Enum):
    """
    What a single poll did
    """
    NO_CHANGE = 'no_change'
    TRIGGERED = 'triggered'
    SKIPPED_BUSY = 'skipped_busy'


class HotFolderMonitor:
    """
    Detects changes through (latest mtime, file count) snapshots

    A file added and removed between two polls, or touched without a content
    change, is not distinguished from the snapshot alone; both are accepted
    approximations of this scheme.
    """

    def __init__(self, watch_dir: Path, trigger: Callable[[], int], interval: int = 30,
                 token: Optional[CancellationToken] = None,
                 on_cycle: Optional[Callable[[CycleResult, DirectorySnapshot, Optional[int]], None]] = None):
        """
        Initialize monitor

        Args:
            watch_dir: Directory to watch
            trigger: Runs one sync and returns its exit code; raises
                SyncInProgressError when another sync holds the lock; any other
                DataSyncError or OSError counts as a failed sync (exit code 1)
            interval: Seconds between polls, a minimum gap while syncs run long
            token: Cancellation token that stops the loop
            on_cycle: Callback receiving each cycle's result, snapshot and exit code
        """
        self.watch_dir = Path(watch_dir)
        self.trigger = trigger
        self.interval = interval
        self.token = token or CancellationToken()
        self.on_cycle = on_cycle
        self.state = MonitorState.IDLE
        self.last_snapshot: Optional[DirectorySnapshot] = None

    def start(self) -> DirectorySnapshot:
        """Record the initial snapshot; existing files do not trigger a sync"""
        self.last_snapshot = snapshot_directory(self.watch_dir)
        logger.info("Monitor started", extra={
            "watch_dir": str(self.watch_dir),
            "check_interval_seconds": self.interval,
            "file_count": self.last_snapshot.file_count
        })
        return self.last_snapshot

    def check(self) -> CycleResult:
        """
        Run one poll cycle

        When the sync lock is busy the previous snapshot is kept, so the same
        change is picked up again on the next cycle.
        """
        if self.last_snapshot is None:
            self.start()

        current = snapshot_directory(self.watch_dir)
        if not current.differs_from(self.last_snapshot):
            logger.debug("No changes detected", extra={
                "file_count": current.file_count,
                "total_size": current.total_size
            })
            self._notify(CycleResult.NO_CHANGE, current, None)
            return CycleResult.NO_CHANGE

        logger.info("Changes detected", extra={
            "watch_dir": str(self.watch_dir),
            "file_count": current.file_count,
            "previous_file_count": self.last_snapshot.file_count,
            "total_size": current.total_size
        })

        self.state = MonitorState.SYNCING
        try:
            exit_code = self.trigger()
        except SyncInProgressError:
            logger.info("Sync already running, skipping this cycle")
            self._notify(CycleResult.SKIPPED_BUSY, current, None)
            return CycleResult.SKIPPED_BUSY
        except (DataSyncError, OSError) as e:
            logger.error("Triggered sync raised an error", extra={
                "watch_dir": str(self.watch_dir),
                "error_type": type(e).__name__,
                "error_message": str(e)
            })
            exit_code = 1
        finally:
            self.state = MonitorState.IDLE

        self.last_snapshot = current
        log = logger.info if exit_code == 0 else logger.error
        log("Triggered sync finished", extra={"exit_code": exit_code})
        self._notify(CycleResult.TRIGGERED, current, exit_code)
        return CycleResult.TRIGGERED

    def run(self) -> None:
        """Poll until the cancellation token is set"""
        if self.last_snapshot is None:
            self.start()
        while not self.token.cancelled:
            cycle_start = time.monotonic()
            self.check()
            # Interval counts from the start of the cycle; a long sync delays the next poll
            remaining = self.interval - (time.monotonic() - cycle_start)
            if remaining > 0 and self.token.wait(remaining):
                break
        logger.info("Monitor stopped", extra={"watch_dir": str(self.watch_dir)})

    def _notify(self, result: CycleResult, snapshot: DirectorySnapshot, exit_code: Optional[int]) -> None:
        if self.on_cycle is not None:
            self.on_cycle(result, snapshot, exit_code)
