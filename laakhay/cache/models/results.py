"""Result types returned by fetch collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FetchByQueryResult:
    """Entities matched by a query fetch.

    Attributes:
        entities: Matched entities; for paginated fetches in position order
            starting at the requested segment's offset
        total: Total number of results of the query, if the provider reports
            one (paginated repositories use it as the query limit)
    """

    entities: list[Any] = field(default_factory=list)
    total: int | None = None

    def __post_init__(self) -> None:
        if self.total is not None and self.total < 0:
            raise ValueError("total must be non-negative")
