"""Repository configuration.

Repositories take a single frozen ``RepositoryConfig``. Defaults match the
behaviour callers get without passing one.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class RepositoryConfig:
    """Tunable behaviour shared by all repositories.

    Attributes:
        default_count: Window size used when a paginated call omits ``count``
        max_concurrent_fetches: Upper bound on concurrently running segment
            fetches for one paginated load (None = unbounded)
        clone: Function producing an independent copy of an entity for
            mutable-copy batches
    """

    default_count: int = 10
    max_concurrent_fetches: int | None = None
    clone: Callable[[Any], Any] = field(default=copy.deepcopy)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.default_count < 1:
            raise ValueError("default_count must be at least 1")
        if self.max_concurrent_fetches is not None and self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be at least 1 or None")
        if not callable(self.clone):
            raise ValueError("clone must be callable")
