"""Laakhay Cache - Deduplicating, incrementally loading entity cache for async providers."""

from .core import (
    EvictedWhileWaitingError,
    FetchError,
    IdentityMismatchError,
    RepositoryConfig,
    RepositoryError,
    RequestStatus,
    ResetWhileWaitingError,
    SegmentInvariantError,
    WaitInterruptedError,
)
from .models import FetchByQueryResult, Segment, SegmentWithIds, sort_segments, tidy_segments
from .pagination import PaginationRange, PaginationState
from .repository import (
    ErrorListener,
    IndexableRepository,
    PaginatedSearchableRepository,
    Repository,
    SearchableRepository,
    SearchState,
)
from .state import RequestInfo, RequestStates, canonical_key

__version__ = "0.1.0"

__all__ = [
    # Repositories
    "Repository",
    "IndexableRepository",
    "SearchableRepository",
    "PaginatedSearchableRepository",
    "SearchState",
    "ErrorListener",
    # Models
    "FetchByQueryResult",
    "Segment",
    "SegmentWithIds",
    "sort_segments",
    "tidy_segments",
    # Pagination
    "PaginationRange",
    "PaginationState",
    # Request state
    "RequestStatus",
    "RequestInfo",
    "RequestStates",
    "canonical_key",
    # Configuration
    "RepositoryConfig",
    # Exceptions
    "RepositoryError",
    "FetchError",
    "IdentityMismatchError",
    "WaitInterruptedError",
    "EvictedWhileWaitingError",
    "ResetWhileWaitingError",
    "SegmentInvariantError",
]
