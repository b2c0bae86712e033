# src/bucketsync/exceptions.py
"""Custom exceptions for the bucketsync application."""

from typing import Optional


class BucketSyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(BucketSyncError):
    """Raised for configuration-related issues."""

    pass


class ListingError(BucketSyncError):
    """Raised when a page of a store listing cannot be fetched."""

    def __init__(self, store: str, cause: BaseException) -> None:
        super().__init__(f"Listing of '{store}' failed: {cause}")
        self.store: str = store
        self.cause: BaseException = cause


class CheckpointCorruptError(BucketSyncError):
    """Raised when the checkpoint snapshot cannot be parsed."""

    pass


class JournalLineError(BucketSyncError):
    """Raised for a single malformed journal line."""

    pass


class ObjectNotFoundError(BucketSyncError):
    """Raised when an object is absent from a store."""

    def __init__(self, store: str, name: str) -> None:
        super().__init__(f"Object '{name}' not found in '{store}'")
        self.store: str = store
        self.name: str = name


class TransferError(BucketSyncError):
    """Raised when a single object transfer fails."""

    def __init__(self, name: str, cause: Optional[BaseException] = None) -> None:
        reason: str = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"Transfer of '{name}' failed: {reason}")
        self.name: str = name
        self.cause: Optional[BaseException] = cause
