"""
Data models for S3 objects
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class S3Object:
    """
    Represents an S3 object under the sync destination prefix
    """
    key: str
    last_modified: datetime
    size: int
    etag: str
