#!/usr/bin/env python3
"""
Command line entry point for the DataSync simulator

Usage:
    datasync-simulator [--config FILE] sync
    datasync-simulator [--config FILE] verify [CHECKSUM_FILE | --metadata]
    datasync-simulator [--config FILE] monitor
    datasync-simulator [--config FILE] stop-monitor
    datasync-simulator [--config FILE] status

The configuration file defaults to ~/datasync-config.env.
"""

import argparse
import os
import signal
import sys
import time
from datetime import date
from pathlib import Path
from typing import List, Optional

from aws_lambda_powertools import Logger

from config import DEFAULT_CONFIG_PATH, SimulatorConfig, load_config
from console import Colors, print_error, print_header, print_info, print_success, print_warning
from exceptions import ConfigurationError, S3OperationError, SyncInProgressError
from log_config import SERVICE_NAME, setup_logging
from models.directory_snapshot import DirectorySnapshot
from services.cancellation import CancellationToken
from services.checksum_record import latest_checksum_record
from services.hot_folder_monitor import CycleResult, HotFolderMonitor
from services.sync_lock import SyncLock
from simulator import collect_status, run_sync, run_verification

logger = Logger(service=SERVICE_NAME, child=True)


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel the token on SIGINT/SIGTERM so in-flight work stops cleanly"""
    def handle(signum, frame):
        logger.warning("Cancellation requested", extra={"signal": signal.Signals(signum).name})
        token.cancel()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def cmd_sync(config: SimulatorConfig, args: argparse.Namespace) -> int:
    token = CancellationToken()
    install_signal_handlers(token)
    try:
        run = run_sync(config, token)
    except SyncInProgressError:
        print_warning("Sync is already in progress")
        print_info("Wait for it to complete or check status with: datasync-simulator status")
        return 1
    except (ConfigurationError, S3OperationError) as e:
        print_error(str(e))
        logger.error("Sync run aborted", extra={"error_type": type(e).__name__, "error_message": str(e)})
        return 1
    return run.exit_code


def cmd_verify(config: SimulatorConfig, args: argparse.Namespace) -> int:
    record_file = Path(args.checksum_file) if args.checksum_file else None
    if not args.metadata and record_file is None:
        record_file = latest_checksum_record(config.checksum_dir)
        if record_file is None:
            print_error(f"No checksum files found in {config.checksum_dir}")
            print_info("Run a sync with VERIFY_AFTER_UPLOAD=true first to generate checksums.")
            return 1
        print_info(f"Using most recent checksum file: {record_file}")

    print_header("Checksum Verification")
    print_info(f"S3 destination: {config.s3_destination}")

    token = CancellationToken()
    install_signal_handlers(token)
    try:
        result = run_verification(config, record_file=record_file, metadata=args.metadata, token=token)
    except (ConfigurationError, S3OperationError) as e:
        print_error(str(e))
        return 1

    print_info(f"Total checked: {result.total_checked}")
    print_info(f"Verified:      {result.verified_count}")
    if result.missing_count:
        print_warning(f"Missing:       {result.missing_count}")
    for error in result.errors:
        print_error(error)

    if result.error_count == 0 and not result.cancelled:
        print_success("All checksums verified successfully!")
        return 0
    print_error(f"Verification failed with {result.error_count} errors")
    return 1


def cmd_monitor(config: SimulatorConfig, args: argparse.Namespace) -> int:
    monitor_lock = SyncLock(config.monitor_lock_file, name='monitor')
    if not monitor_lock.acquire():
        print_warning("Monitor is already running")
        print_info("To stop it, run: datasync-simulator stop-monitor")
        return 1

    token = CancellationToken()
    install_signal_handlers(token)

    def trigger() -> int:
        print(f"{Colors.GREEN}Triggering sync...{Colors.NC}")
        try:
            return run_sync(config, token).exit_code
        except (ConfigurationError, S3OperationError) as e:
            print_error(str(e))
            logger.error("Triggered sync aborted", extra={"error_message": str(e)})
            return 1

    def on_cycle(result: CycleResult, snapshot: DirectorySnapshot, exit_code: Optional[int]) -> None:
        if result is CycleResult.NO_CHANGE:
            print(f"{Colors.CYAN}No changes (Files: {snapshot.file_count}, Size: {snapshot.total_size}){Colors.NC}")
        elif result is CycleResult.SKIPPED_BUSY:
            print(f"{Colors.CYAN}Sync already in progress, waiting...{Colors.NC}")
        elif exit_code == 0:
            print_success("Sync completed successfully")
        else:
            print_error(f"Sync failed with exit code: {exit_code}")

    monitor = HotFolderMonitor(
        watch_dir=config.source_dir,
        trigger=trigger,
        interval=args.interval or config.check_interval,
        token=token,
        on_cycle=on_cycle
    )

    print_header("Hot Folder Monitor - DataSync Simulator")
    print_info(f"Watching directory: {config.source_dir}")
    print_info(f"Check interval: {monitor.interval} seconds")
    try:
        monitor.run()
    finally:
        monitor_lock.release()
    print_info("Monitor stopped")
    return 0


def cmd_stop_monitor(config: SimulatorConfig, args: argparse.Namespace) -> int:
    monitor_lock = SyncLock(config.monitor_lock_file, name='monitor')
    pid = monitor_lock.holder_pid()
    if pid is None:
        print_warning("Monitor is not running")
        return 0

    print_info(f"Stopping hot folder monitor (PID: {pid})...")
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        print_warning("Monitor exited before it could be signalled")
        return 0

    deadline = time.monotonic() + args.timeout
    while time.monotonic() < deadline:
        if not monitor_lock.is_locked():
            print_success("Monitor stopped successfully")
            return 0
        time.sleep(0.2)

    print_error("Failed to stop monitor (still running)")
    return 1


def cmd_status(config: SimulatorConfig, args: argparse.Namespace) -> int:
    status = collect_status(config)

    print_header("DataSync Simulation - Status Check")
    if status["monitor_running"]:
        pid = status["monitor_pid"]
        print_success("Monitor: RUNNING" + (f" (PID: {pid})" if pid else ""))
    else:
        print_warning("Monitor: STOPPED")
    print_info("Sync: IN PROGRESS" if status["sync_in_progress"] else "Sync: IDLE")

    print()
    print("Local Source:")
    if status["source_exists"]:
        print(f"  Location: {status['source_dir']}")
        print(f"  Files: {status['source_files']}")
        print(f"  Size: {status['source_size']}")
    else:
        print(f"  Directory not found: {status['source_dir']}")

    print()
    print("S3 Destination:")
    print(f"  Path: {status['destination']}")
    if status["s3_objects"] is None:
        print(f"  Objects: unavailable ({status.get('s3_error')})")
    else:
        print(f"  Objects: {status['s3_objects']}")

    print()
    print("Last Sync:")
    last_sync = status["last_sync"]
    if last_sync:
        checksum = last_sync.get("checksum_verification", {})
        print(f"  Time: {last_sync.get('timestamp')}")
        print(f"  Status: {last_sync.get('status')}")
        print(f"  Duration: {last_sync.get('duration_seconds')}s")
        print(f"  Checksums verified: {checksum.get('verified')} (errors: {checksum.get('errors')})")
    else:
        print("  No sync performed yet")

    today = date.today().strftime('%Y%m%d')
    print()
    print("Logs:")
    print(f"  Monitor log: {config.logs_dir / f'monitor-{today}.log'}")
    print(f"  Sync log: {config.logs_dir / f'sync-{today}.log'}")
    return 0


COMMANDS = {
    'sync': (cmd_sync, 'sync'),
    'verify': (cmd_verify, 'sync'),
    'monitor': (cmd_monitor, 'monitor'),
    'stop-monitor': (cmd_stop_monitor, 'monitor'),
    'status': (cmd_status, 'sync'),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='datasync-simulator',
        description='Simulate AWS DataSync with S3 mirroring and checksum verification'
    )
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH,
                        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})")
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('sync', help='Run one sync now')

    verify = subparsers.add_parser('verify', help='Verify S3 objects against stored checksums')
    verify.add_argument('checksum_file', nargs='?',
                        help='Checksum file; the most recent one is used if omitted')
    verify.add_argument('--metadata', action='store_true',
                        help='Check server-side checksums via object metadata instead of downloading; '
                             'takes no CHECKSUM_FILE')

    monitor = subparsers.add_parser('monitor', help='Watch the source directory and sync on change')
    monitor.add_argument('--interval', type=int, default=None,
                         help='Seconds between checks (default: MONITOR_CHECK_INTERVAL)')

    stop = subparsers.add_parser('stop-monitor', help='Stop a running monitor')
    stop.add_argument('--timeout', type=float, default=5.0, help='Seconds to wait for the monitor to exit')

    subparsers.add_parser('status', help='Show monitor, sync and last-run status')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == 'verify' and args.metadata and args.checksum_file:
        parser.error("verify: CHECKSUM_FILE cannot be combined with --metadata")

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print_error(str(e))
        return 1

    handler, log_prefix = COMMANDS[args.command]
    setup_logging(config.logs_dir, prefix=log_prefix, level=config.log_level)

    try:
        return handler(config, args)
    except KeyboardInterrupt:
        print_warning("Interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
