"""Tests for directory snapshots and the polling monitor."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from exceptions import S3OperationError, SyncInProgressError
from models.directory_snapshot import DirectorySnapshot, human_readable_size
from services import hot_folder_monitor
from services.cancellation import CancellationToken
from services.hot_folder_monitor import CycleResult, HotFolderMonitor, MonitorState
from services.local_files import snapshot_directory

from conftest import write_files


class RecordingTrigger:
    def __init__(self, exit_code: int = 0) -> None:
        self.calls = 0
        self.exit_code = exit_code
        self.busy = False
        self.error: Exception | None = None

    def __call__(self) -> int:
        self.calls += 1
        if self.busy:
            raise SyncInProgressError("sync already in progress")
        if self.error is not None:
            raise self.error
        return self.exit_code


class TestSnapshot:
    def test_counts_files_and_bytes(self, source_dir: Path) -> None:
        write_files(source_dir, {"a": b"x" * 10, "sub/b": b"x" * 20, "sub/deep/c": b"x" * 30})

        snapshot = snapshot_directory(source_dir)

        assert snapshot.file_count == 3
        assert snapshot.total_bytes == 60
        assert snapshot.total_size == "60B"
        assert snapshot.latest_mtime == max(p.stat().st_mtime for p in source_dir.rglob("*") if p.is_file())

    def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        snapshot = snapshot_directory(tmp_path / "absent")
        assert snapshot == DirectorySnapshot(latest_mtime=None, file_count=0, total_bytes=0)

    def test_differs_from(self) -> None:
        base = DirectorySnapshot(latest_mtime=100.0, file_count=2)

        assert base.differs_from(None)
        assert not base.differs_from(DirectorySnapshot(latest_mtime=100.0, file_count=2, total_bytes=99))
        assert base.differs_from(DirectorySnapshot(latest_mtime=101.0, file_count=2))
        assert base.differs_from(DirectorySnapshot(latest_mtime=100.0, file_count=3))

    def test_human_readable_size(self) -> None:
        assert human_readable_size(0) == "0B"
        assert human_readable_size(512) == "512B"
        assert human_readable_size(1536) == "1.5K"
        assert human_readable_size(12 * 1024) == "12K"
        assert human_readable_size(5 * 1024 ** 3) == "5.0G"


class TestHotFolderMonitor:
    def test_existing_files_do_not_trigger(self, source_dir: Path) -> None:
        write_files(source_dir, {"already-there.txt": b"x"})
        trigger = RecordingTrigger()
        monitor = HotFolderMonitor(source_dir, trigger)
        monitor.start()

        assert monitor.check() is CycleResult.NO_CHANGE
        assert trigger.calls == 0

    def test_new_file_triggers_once(self, source_dir: Path) -> None:
        trigger = RecordingTrigger()
        monitor = HotFolderMonitor(source_dir, trigger)
        monitor.start()

        write_files(source_dir, {"new.txt": b"x"})

        assert monitor.check() is CycleResult.TRIGGERED
        assert monitor.check() is CycleResult.NO_CHANGE
        assert trigger.calls == 1
        assert monitor.state is MonitorState.IDLE

    def test_modified_file_triggers(self, source_dir: Path) -> None:
        write_files(source_dir, {"a.txt": b"x"})
        os.utime(source_dir / "a.txt", (1_000_000, 1_000_000))
        trigger = RecordingTrigger()
        monitor = HotFolderMonitor(source_dir, trigger)
        monitor.start()

        os.utime(source_dir / "a.txt", (2_000_000, 2_000_000))

        assert monitor.check() is CycleResult.TRIGGERED

    def test_deleted_file_triggers(self, source_dir: Path) -> None:
        write_files(source_dir, {"a.txt": b"x", "b.txt": b"y"})
        trigger = RecordingTrigger()
        monitor = HotFolderMonitor(source_dir, trigger)
        monitor.start()

        (source_dir / "b.txt").unlink()

        assert monitor.check() is CycleResult.TRIGGERED

    def test_busy_lock_retries_on_next_cycle(self, source_dir: Path) -> None:
        trigger = RecordingTrigger()
        monitor = HotFolderMonitor(source_dir, trigger)
        monitor.start()
        write_files(source_dir, {"new.txt": b"x"})

        trigger.busy = True
        assert monitor.check() is CycleResult.SKIPPED_BUSY
        assert monitor.state is MonitorState.IDLE

        trigger.busy = False
        assert monitor.check() is CycleResult.TRIGGERED
        assert trigger.calls == 2

    def test_failed_sync_is_reported_and_not_retried(self, source_dir: Path) -> None:
        cycles: list[tuple[CycleResult, int | None]] = []
        trigger = RecordingTrigger(exit_code=1)
        monitor = HotFolderMonitor(
            source_dir, trigger, on_cycle=lambda result, snapshot, code: cycles.append((result, code))
        )
        monitor.start()
        write_files(source_dir, {"new.txt": b"x"})

        monitor.check()
        monitor.check()

        assert cycles == [(CycleResult.TRIGGERED, 1), (CycleResult.NO_CHANGE, None)]
        assert trigger.calls == 1

    def test_trigger_error_counts_as_failed_sync(self, source_dir: Path) -> None:
        cycles: list[tuple[CycleResult, int | None]] = []
        trigger = RecordingTrigger()
        trigger.error = FileNotFoundError(2, "No such file or directory")
        monitor = HotFolderMonitor(
            source_dir, trigger, on_cycle=lambda result, snapshot, code: cycles.append((result, code))
        )
        monitor.start()
        write_files(source_dir, {"new.txt": b"x"})

        with patch.object(hot_folder_monitor.logger, "error") as log_error:
            assert monitor.check() is CycleResult.TRIGGERED

        assert cycles == [(CycleResult.TRIGGERED, 1)]
        assert monitor.state is MonitorState.IDLE
        assert log_error.call_args_list[0].kwargs["extra"]["error_type"] == "FileNotFoundError"

    def test_run_keeps_polling_after_trigger_error(self, source_dir: Path) -> None:
        token = CancellationToken()
        cycles: list[tuple[CycleResult, int | None]] = []

        def on_cycle(result: CycleResult, snapshot: DirectorySnapshot, code: int | None) -> None:
            cycles.append((result, code))
            if len(cycles) == 2:
                token.cancel()

        trigger = RecordingTrigger()
        trigger.error = S3OperationError("S3 error during list_objects: AccessDenied")
        monitor = HotFolderMonitor(source_dir, trigger, interval=0, token=token, on_cycle=on_cycle)
        monitor.start()
        write_files(source_dir, {"new.txt": b"x"})

        monitor.run()

        assert cycles == [(CycleResult.TRIGGERED, 1), (CycleResult.NO_CHANGE, None)]

    def test_run_stops_when_cancelled(self, source_dir: Path) -> None:
        token = CancellationToken()
        cycles: list[CycleResult] = []

        def on_cycle(result: CycleResult, snapshot: DirectorySnapshot, code: int | None) -> None:
            cycles.append(result)
            if len(cycles) == 3:
                token.cancel()

        monitor = HotFolderMonitor(source_dir, RecordingTrigger(), interval=0, token=token, on_cycle=on_cycle)
        monitor.run()

        assert cycles == [CycleResult.NO_CHANGE] * 3

    def test_run_returns_immediately_when_already_cancelled(self, source_dir: Path) -> None:
        token = CancellationToken()
        token.cancel()
        trigger = RecordingTrigger()

        HotFolderMonitor(source_dir, trigger, interval=60, token=token).run()

        assert trigger.calls == 0
