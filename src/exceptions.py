"""
Custom exceptions for the DataSync simulator
"""


class DataSyncError(Exception):
    """Base exception for sync operations"""
    pass


class ConfigurationError(DataSyncError):
    """Configuration and setup errors"""
    pass


class S3OperationError(DataSyncError):
    """S3 operation errors"""
    pass


class DigestMismatchError(S3OperationError):
    """S3 rejected an upload because the checksum it computed did not match the declared one"""
    pass


class SyncInProgressError(DataSyncError):
    """Another sync run holds the sync lock"""
    pass


class OperationCancelledError(DataSyncError):
    """A long-running operation was cancelled"""
    pass


class DeadlineExceededError(OperationCancelledError):
    """A long-running operation ran past its deadline"""
    pass
