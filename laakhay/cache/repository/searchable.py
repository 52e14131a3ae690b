"""Query cache on top of the entity cache.

Architecture:
    ``SearchableRepository`` adds a second request-state table keyed by query.
    Its payload is the ordered set of ids the query matched. Entities returned
    by a query fetch are merged into the shared entity cache, and the id set
    recorded, in one step.

    Invalidation is conservative: evicting an entity drops every cached query
    whose result contains it, so the whole query is fetched again next time.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections.abc import Hashable
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Generic, TypeVar

from ..core.config import RepositoryConfig
from ..core.enums import RequestStatus
from ..core.exceptions import EvictedWhileWaitingError, FetchError, ResetWhileWaitingError
from ..models.results import FetchByQueryResult
from ..state.request_states import RequestStates
from .base import Waiter, WaiterRegistry
from .indexable import EntityT, IdT, IndexableRepository
from .telemetry import log_fetch_completed, log_fetch_error, log_fetch_started, log_stale_result

QueryT = TypeVar("QueryT")


@dataclass
class SearchState:
    """Ids matched by one query, in result order."""

    resulting_ids: tuple[Hashable, ...] = ()


class SearchableRepository(IndexableRepository[EntityT, IdT], Generic[QueryT, EntityT, IdT]):
    """Caches query results and deduplicates query loading.

    Queries may be any value ``canonical_key`` understands (dicts, lists,
    dataclasses, pydantic models, scalars); structurally equal queries share
    one cache entry regardless of field order.
    """

    def __init__(self, *, config: RepositoryConfig | None = None) -> None:
        super().__init__(config=config)
        self._state_by_query: RequestStates[QueryT, Any] = RequestStates(self._new_query_state)
        self._query_waiters = WaiterRegistry()

    def _new_query_state(self) -> Any:
        return SearchState()

    @abstractmethod
    async def fetch_by_query(self, query: QueryT) -> FetchByQueryResult:
        """Load all entities matching ``query``.

        Return an empty result if nothing matches; raise only for failures.
        """

    # ----------------------
    # Accessors
    # ----------------------
    def by_query(self, query: QueryT) -> list[EntityT]:
        """Return the cached result of ``query``, loading it in the background.

        Never raises; returns an empty list until the query is loaded.
        """
        if self._state_by_query.is_status(query, RequestStatus.NONE):
            self._spawn_load(lambda: self._load_by_query(query))
        return self._resolve_entities(query)

    async def by_query_async(self, query: QueryT) -> list[EntityT]:
        """Load ``query`` if needed and return the matching entities.

        Raises:
            FetchError: If loading the query failed
            WaitInterruptedError: If an entity of the query was evicted or the
                repository reset while waiting
        """
        await self._load_by_query(query)
        return self._resolve_entities(query)

    def wait_for_query(self, query: QueryT) -> asyncio.Future[None]:
        """Future that settles once ``query`` is loaded, without starting a load."""
        return self._query_waiters.add(self._state_by_query.key_of(query))

    async def reload_query(self, query: QueryT) -> list[EntityT]:
        """Discard the cached result of ``query`` and fetch it again."""
        self._state_by_query.delete(query)
        return await self.by_query_async(query)

    def is_query_known(self, query: QueryT) -> bool:
        return not self._state_by_query.is_status(query, RequestStatus.NONE)

    def query_status(self, query: QueryT) -> RequestStatus:
        return self._state_by_query.status_of(query)

    def _resolve_entities(self, query: QueryT) -> list[EntityT]:
        ids = self._state_by_query.get_state(query).resulting_ids
        return [self._entities[id_] for id_ in ids if id_ in self._entities]

    # ----------------------
    # Invalidation
    # ----------------------
    def _query_state_has_id(self, state: Any, id_: IdT) -> bool:
        return id_ in state.resulting_ids

    def _evict_dependents(self, id_: IdT) -> int:
        invalidated = super()._evict_dependents(id_)
        for info in self._state_by_query:
            if not self._query_state_has_id(info.state, id_):
                continue
            self._state_by_query.delete(info.key)
            self._query_waiters.settle(
                self._state_by_query.key_of(info.key),
                EvictedWhileWaitingError(
                    f"Entity {id_!r} of query {info.key!r} was evicted while waiting",
                    key=info.key,
                ),
            )
            invalidated += 1
        return invalidated

    def _reset_dependents(self) -> int:
        rejected = super()._reset_dependents()
        rejected += self._query_waiters.reject_all(
            lambda waiter: ResetWhileWaitingError("Repository was reset while waiting", key=waiter.key)
        )
        self._state_by_query.reset()
        return rejected

    # ----------------------
    # Loading
    # ----------------------
    def _waiter_ready(self, query: QueryT, waiter: Waiter) -> bool:
        """Whether a successful load of ``query`` satisfies ``waiter``."""
        return True

    def _settle_query_waiters(self, query: QueryT, error: BaseException | None = None) -> None:
        self._query_waiters.settle(
            self._state_by_query.key_of(query),
            error,
            ready=lambda waiter: self._waiter_ready(query, waiter),
        )

    def _begin_query_attempt(self, query: QueryT) -> Any:
        """Mark ``query`` IN_PROGRESS and return its state, which identifies the attempt."""
        self._state_by_query.set_status(query, RequestStatus.IN_PROGRESS)
        self._begin_load()
        return self._state_by_query.get_state(query)

    def _is_current_query_attempt(self, query: QueryT, state: Any) -> bool:
        info = self._state_by_query.get(query)
        return info.status is RequestStatus.IN_PROGRESS and info.state is state

    def _start_query_fetch(self, query: QueryT) -> None:
        state = self._begin_query_attempt(query)
        self._spawn(lambda: self._fetch_query(query, state))

    async def _load_by_query(self, query: QueryT) -> None:
        while True:
            info = self._state_by_query.get(query)
            if info.status is RequestStatus.DONE:
                return
            if info.status is RequestStatus.ERROR:
                raise info.error  # type: ignore[misc]
            waiter = self.wait_for_query(query)
            if info.status is RequestStatus.NONE:
                self._start_query_fetch(query)
            await waiter

    async def _fetch_query(self, query: QueryT, state: SearchState) -> None:
        """Run one fetch for ``query`` and settle its status and waiters. Never raises."""
        started = perf_counter()
        log_fetch_started(repository=self.name, kind="query", key=query)
        try:
            # Merging the result counts as part of the fetch
            try:
                result = await self.fetch_by_query(query)

                if not self._is_current_query_attempt(query, state):
                    log_stale_result(repository=self.name, kind="query", key=query)
                    return

                entities = list(result.entities)
                resulting_ids = tuple(dict.fromkeys(self.extract_id(entity) for entity in entities))
                for entity in entities:
                    self.add(entity)
            except Exception as e:
                self._fail_query(query, state, e)
                return

            state.resulting_ids = resulting_ids
            self._state_by_query.set_status(query, RequestStatus.DONE)
            log_fetch_completed(
                repository=self.name,
                kind="query",
                key=query,
                entities=len(entities),
                latency_ms=(perf_counter() - started) * 1000.0,
            )
            self._settle_query_waiters(query)
        finally:
            self._end_load()

    def _fail_query(self, query: QueryT, state: Any, error: Exception) -> None:
        """Record a failed query fetch: log, notify listeners, reject waiters."""
        log_fetch_error(
            repository=self.name,
            kind="query",
            key=query,
            error_type=type(error).__name__,
            error_message=str(error),
        )
        self._notify_error(error)
        if not self._is_current_query_attempt(query, state):
            log_stale_result(repository=self.name, kind="query", key=query)
            return
        fetch_error = FetchError(f"Fetching query {query!r} failed: {error}", key=query, error=error)
        self._state_by_query.set_status(query, RequestStatus.ERROR, fetch_error)
        self._settle_query_waiters(query, fetch_error)
