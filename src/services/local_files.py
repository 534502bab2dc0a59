"""
Local source directory scanning
"""

import os
from pathlib import Path
from typing import Iterator, Tuple

from models.directory_snapshot import DirectorySnapshot


def iter_local_files(root: Path) -> Iterator[Tuple[Path, str]]:
    """
    Yield every regular file under root with its POSIX path relative to root

    Files are yielded in sorted order so checksum records are stable.
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.is_file():
                yield path, path.relative_to(root).as_posix()


def snapshot_directory(root: Path) -> DirectorySnapshot:
    """
    Capture latest modification time, file count and total size

    A missing directory yields an empty snapshot rather than an error so the
    monitor keeps polling until the directory appears.
    """
    latest_mtime = None
    file_count = 0
    total_bytes = 0

    for path, _ in iter_local_files(root):
        try:
            stat = path.stat()
        except FileNotFoundError:
            # Removed between listing and stat
            continue
        file_count += 1
        total_bytes += stat.st_size
        if latest_mtime is None or stat.st_mtime > latest_mtime:
            latest_mtime = stat.st_mtime

    return DirectorySnapshot(latest_mtime=latest_mtime, file_count=file_count, total_bytes=total_bytes)
