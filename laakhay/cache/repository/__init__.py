"""Repositories: entity, query and windowed-query caches.

Architecture:
    - base.py: error listeners, waiters, in-flight accounting, background tasks
    - indexable.py: entities by id (IndexableRepository)
    - searchable.py: query results (SearchableRepository)
    - paginated.py: windowed query results (PaginatedSearchableRepository)
    - telemetry.py: structured logging
"""

from __future__ import annotations

from .base import ErrorListener, Repository, Waiter, WaiterRegistry
from .indexable import IndexableRepository
from .paginated import PaginatedSearchableRepository
from .searchable import SearchableRepository, SearchState

__all__ = [
    "ErrorListener",
    "Repository",
    "Waiter",
    "WaiterRegistry",
    "IndexableRepository",
    "SearchableRepository",
    "SearchState",
    "PaginatedSearchableRepository",
]
