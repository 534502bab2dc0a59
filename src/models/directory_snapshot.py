"""
Data models for local directory state
"""

from dataclasses import dataclass
from typing import Optional


def human_readable_size(num_bytes: int) -> str:
    """Format a byte count the way `du -h` does (1.5K, 12M, 3.2G)"""
    size = float(num_bytes)
    units = ['B', 'K', 'M', 'G', 'T', 'P']
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    if index == 0:
        return f"{int(size)}B"
    if size < 10:
        return f"{size:.1f}{units[index]}"
    return f"{size:.0f}{units[index]}"


@dataclass(frozen=True)
class DirectorySnapshot:
    """
    Point-in-time view of a watched directory used for change detection
    """
    latest_mtime: Optional[float]
    file_count: int
    total_bytes: int = 0

    @property
    def total_size(self) -> str:
        return human_readable_size(self.total_bytes)

    def differs_from(self, other: Optional['DirectorySnapshot']) -> bool:
        """Check if latest modification time or file count changed"""
        if other is None:
            return True
        return self.latest_mtime != other.latest_mtime or self.file_count != other.file_count
