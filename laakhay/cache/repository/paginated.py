"""Windowed query cache with incremental loading.

Architecture:
    ``PaginatedSearchableRepository`` keeps, per query, a ``PaginationState``:
    the tidy set of loaded segments (with the ids at their positions) and the
    query's limit once known. A request for a window only fetches the gaps
    the loaded segments leave inside it:

    1. Return if the window (clipped to the limit) is loaded, or raise if the
       query is in ERROR
    2. If a load is running, wait for it to settle and re-evaluate, since it
       may cover only part of the window
    3. Otherwise mark IN_PROGRESS and compute the missing segments
    4. Fetch the missing segments concurrently; merge each batch into the
       entity cache and the range as soon as it arrives. A batch shorter
       than requested sets ``limit = segment.offset + len(batch)``
    5. All succeeded: DONE, resolve waiters whose window is now covered
    6. Any failed: ERROR, notify listeners, reject every waiter of the query

Design Decisions:
    - Waiters carry their window; a load that covers only part of a waiter's
      window leaves it registered for the next load
    - The limit is exclusive and only ever shrinks; windows are clipped to it,
      so nothing is fetched past the end of a query
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import abstractmethod
from collections.abc import Mapping
from time import perf_counter
from typing import Any, Generic

from ..core.enums import RequestStatus
from ..models.results import FetchByQueryResult
from ..models.segment import Segment, SegmentWithIds
from ..pagination.state import PaginationState
from .base import Waiter
from .indexable import EntityT, IdT
from .searchable import QueryT, SearchableRepository
from .telemetry import (
    log_fetch_completed,
    log_fetch_started,
    log_limit_discovered,
    log_segment_plan,
    log_stale_result,
)

Window = Segment | Mapping[str, int] | None


class PaginatedSearchableRepository(SearchableRepository[QueryT, EntityT, IdT], Generic[QueryT, EntityT, IdT]):
    """Caches windows of query results and fetches only what is missing.

    Example:
        class ArticleRepository(PaginatedSearchableRepository[dict, Article, str]):
            def extract_id(self, entity: Article) -> str:
                return entity.slug

            async def fetch_by_id(self, id_: str) -> Article | None:
                ...

            async def fetch_by_query(self, query: dict, segment: Segment) -> FetchByQueryResult:
                rows = await self._client.search(**query, offset=segment.offset, limit=segment.count)
                return FetchByQueryResult(entities=[Article(**row) for row in rows])

        repository = ArticleRepository()
        first_page = await repository.by_query_async({"tag": "python"}, Segment(offset=0, count=20))
    """

    def _new_query_state(self) -> PaginationState:
        return PaginationState()

    @abstractmethod
    async def fetch_by_query(self, query: QueryT, segment: Segment) -> FetchByQueryResult:  # type: ignore[override]
        """Load the entities of ``query`` at the positions of ``segment``.

        Entities must be returned in position order starting at
        ``segment.offset``. Returning fewer than ``segment.count`` entities
        marks the end of the query.
        """

    def _complete_window(self, window: Window) -> Segment:
        """Fill in a partial window with offset 0 and the configured default count."""
        if window is None:
            return Segment(offset=0, count=self.config.default_count)
        if isinstance(window, Segment):
            return Segment.of(window)
        if isinstance(window, Mapping):
            return Segment(
                offset=window.get("offset", 0),
                count=window.get("count", self.config.default_count),
            )
        return Segment.of(window)

    # ----------------------
    # Accessors
    # ----------------------
    def by_query(self, query: QueryT, window: Window = None) -> list[EntityT]:  # type: ignore[override]
        """Return the loaded entities of ``window``, loading the rest in the background.

        Never raises; positions not loaded yet are skipped.
        """
        segment = self._complete_window(window)
        if not self._is_window_loaded(query, segment) and not self._state_by_query.is_status(
            query, RequestStatus.ERROR
        ):
            self._spawn_load(lambda: self._load_by_query(query, segment))
        return self._resolve_entities(query, segment)

    async def by_query_async(self, query: QueryT, window: Window = None) -> list[EntityT]:  # type: ignore[override]
        """Load the missing parts of ``window`` and return its entities.

        Raises:
            FetchError: If loading any segment of the query failed
            WaitInterruptedError: If an entity of the query was evicted or the
                repository reset while waiting
        """
        segment = self._complete_window(window)
        await self._load_by_query(query, segment)
        return self._resolve_entities(query, segment)

    def wait_for_query(self, query: QueryT, window: Window = None) -> asyncio.Future[None]:  # type: ignore[override]
        """Future that settles once ``window`` of ``query`` is loaded, without starting a load.

        Rejects when a load of the query fails, when one of its entities is
        evicted, or when the repository is reset.
        """
        segment = self._complete_window(window)
        return self._query_waiters.add(self._state_by_query.key_of(query), segment)

    async def reload_query(self, query: QueryT, window: Window = None) -> list[EntityT]:  # type: ignore[override]
        """Discard everything cached for ``query`` and load ``window`` again."""
        self._state_by_query.delete(query)
        return await self.by_query_async(query, window)

    def was_out_of_bounds(self, query: QueryT, window: Window) -> bool:
        """Whether ``window`` reaches past the query's known limit."""
        return self._state_by_query.get_state(query).was_out_of_bounds(self._complete_window(window))

    def limit_of(self, query: QueryT) -> int | None:
        return self._state_by_query.get_state(query).limit

    def loaded_segments(self, query: QueryT) -> list[Segment]:
        return self._state_by_query.get_state(query).pagination_range.loaded_segments

    def _resolve_entities(self, query: QueryT, window: Window = None) -> list[EntityT]:  # type: ignore[override]
        segment = self._complete_window(window)
        ids = self._state_by_query.get_state(query).pagination_range.get_ids(segment)
        return [self._entities[id_] for id_ in ids if id_ in self._entities]

    def _is_window_loaded(self, query: QueryT, window: Segment) -> bool:
        state: PaginationState = self._state_by_query.get_state(query)
        return state.pagination_range.is_fully_loaded(state.clip(window))

    # ----------------------
    # Invalidation
    # ----------------------
    def _query_state_has_id(self, state: Any, id_: IdT) -> bool:
        return state.pagination_range.has_id(id_)

    # ----------------------
    # Loading
    # ----------------------
    def _waiter_ready(self, query: QueryT, waiter: Waiter) -> bool:
        return waiter.window is None or self._is_window_loaded(query, waiter.window)

    async def _load_by_query(self, query: QueryT, window: Segment | None = None) -> None:  # type: ignore[override]
        window = self._complete_window(window)
        while True:
            info = self._state_by_query.get(query)
            if info.status is RequestStatus.ERROR:
                raise info.error  # type: ignore[misc]
            if self._is_window_loaded(query, window):
                return
            # Wake on the next settlement of the query, whatever window it's for,
            # since a running load may cover only part of this window
            waiter = self._query_waiters.add(self._state_by_query.key_of(query))
            if info.status is not RequestStatus.IN_PROGRESS:
                self._start_segment_fetches(query, window)
            await waiter

    def _start_segment_fetches(self, query: QueryT, window: Segment) -> None:
        state: PaginationState = self._begin_query_attempt(query)
        missing = state.pagination_range.get_missing_segments(state.clip(window))
        log_segment_plan(repository=self.name, query=query, window=window, missing=missing)
        self._spawn(lambda: self._fetch_segments(query, state, missing))

    async def _fetch_segments(self, query: QueryT, state: PaginationState, segments: list[Segment]) -> None:
        """Fetch all ``segments`` concurrently, then settle the query. Never raises."""
        limit = self.config.max_concurrent_fetches
        semaphore = asyncio.Semaphore(limit) if limit is not None else None
        try:
            results = await asyncio.gather(
                *(self._fetch_segment(query, state, segment, semaphore) for segment in segments),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
            errors = [result for result in results if isinstance(result, Exception)]
            if errors:
                self._fail_query(query, state, errors[0])
                return
            if not self._is_current_query_attempt(query, state):
                log_stale_result(repository=self.name, kind="query", key=query)
                return
            self._state_by_query.set_status(query, RequestStatus.DONE)
            self._settle_query_waiters(query)
        finally:
            self._end_load()

    async def _fetch_segment(
        self,
        query: QueryT,
        state: PaginationState,
        segment: Segment,
        semaphore: asyncio.Semaphore | None,
    ) -> None:
        started = perf_counter()
        log_fetch_started(repository=self.name, kind="query", key=query, window=segment)
        async with semaphore if semaphore is not None else contextlib.nullcontext():
            result = await self.fetch_by_query(query, segment)

        if not self._is_current_query_attempt(query, state):
            log_stale_result(repository=self.name, kind="query", key=query)
            return

        # Everything below runs without awaiting, so each batch is merged atomically
        entities = list(result.entities)[: segment.count]
        loaded = SegmentWithIds.from_ids(segment.offset, (self.extract_id(entity) for entity in entities))
        for entity in entities:
            self.add(entity)
        state.pagination_range.add(loaded)
        previous_limit = state.limit
        if len(entities) < segment.count:
            state.discover_limit(segment.offset + len(entities))
        if result.total is not None:
            state.discover_limit(result.total)
        if state.limit is not None and state.limit != previous_limit:
            log_limit_discovered(repository=self.name, query=query, limit=state.limit)
        log_fetch_completed(
            repository=self.name,
            kind="query",
            key=query,
            entities=len(entities),
            latency_ms=(perf_counter() - started) * 1000.0,
            window=segment,
        )
