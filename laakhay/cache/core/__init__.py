"""Core components."""

from .config import RepositoryConfig
from .enums import RequestStatus
from .exceptions import (
    EvictedWhileWaitingError,
    FetchError,
    IdentityMismatchError,
    RepositoryError,
    ResetWhileWaitingError,
    SegmentInvariantError,
    WaitInterruptedError,
)

__all__ = [
    "RepositoryConfig",
    "RequestStatus",
    "RepositoryError",
    "FetchError",
    "IdentityMismatchError",
    "WaitInterruptedError",
    "EvictedWhileWaitingError",
    "ResetWhileWaitingError",
    "SegmentInvariantError",
]
