"""
Advisory lock serializing sync runs across processes

The lock is an fcntl.flock on a file that also records the owner PID. The
kernel drops the lock when the owning process exits, including on a crash,
so a stale file never blocks the next run.
"""

import fcntl
import os
from pathlib import Path
from typing import Optional

from aws_lambda_powertools import Logger

from exceptions import SyncInProgressError
from log_config import SERVICE_NAME

logger = Logger(service=SERVICE_NAME, child=True)


def pid_alive(pid: int) -> bool:
    """Check if a process with this PID exists"""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


class SyncLock:
    """
    Non-blocking exclusive lock with owner PID
    """

    def __init__(self, path: Path, name: str = 'sync'):
        self.path = Path(path)
        self.name = name
        self._file = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self) -> bool:
        """
        Try to take the lock without blocking

        Returns:
            bool: True if acquired, False if another process holds it
        """
        if self._file is not None:
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Append mode so a failed attempt never truncates the holder's PID
        lock_file = open(self.path, 'a+')
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            return False

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        self._file = lock_file

        logger.debug("Lock acquired", extra={"lock": self.name, "lock_file": str(self.path), "pid": os.getpid()})
        return True

    def release(self) -> None:
        if self._file is None:
            return
        try:
            self._file.seek(0)
            self._file.truncate()
            fcntl.flock(self._file, fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug("Lock released", extra={"lock": self.name, "lock_file": str(self.path)})

    def is_locked(self) -> bool:
        """Check if any process, this one included, holds the lock"""
        if self.held:
            return True
        if not self.path.exists():
            return False

        with open(self.path, 'r') as probe:
            try:
                fcntl.flock(probe, fcntl.LOCK_SH | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(probe, fcntl.LOCK_UN)
            return False

    def holder_pid(self) -> Optional[int]:
        """PID of the live process holding the lock, None if free or unknown"""
        if not self.is_locked():
            return None
        content = self.path.read_text().strip()
        if content.isdigit() and pid_alive(int(content)):
            return int(content)
        return None

    def __enter__(self) -> 'SyncLock':
        if not self.acquire():
            raise SyncInProgressError(f"{self.name} already in progress (lock: {self.path})")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
