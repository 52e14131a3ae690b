"""Entity cache keyed by id.

Architecture:
    ``IndexableRepository`` owns the canonical entity map and one request
    state per id. Subclasses supply the collaborators:
    - ``fetch_by_id``: async, returns the entity or None when it does not exist
    - ``extract_id``: pure, returns the id of an entity

    Per id the status moves NONE -> IN_PROGRESS -> DONE | NOT_FOUND | ERROR.
    At most one fetch per id runs at a time; every other caller registers a
    waiter and re-evaluates once the running fetch settles. ERROR is kept
    until the id is evicted, reloaded or the repository is reset. Entities put
    into the cache with ``add``, including those merged from query fetches,
    move their id straight to DONE.

Mutable copies:
    Named batches of independent clones of cached entities, for editing
    without touching the canonical entity. Batches are created on first
    access and outlive evictions; ``reset`` clears them.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections.abc import Hashable, Mapping
from time import perf_counter
from types import MappingProxyType
from typing import Generic, TypeVar

from ..core.config import RepositoryConfig
from ..core.enums import RequestStatus
from ..core.exceptions import (
    EvictedWhileWaitingError,
    FetchError,
    IdentityMismatchError,
    ResetWhileWaitingError,
)
from ..state.request_states import RequestStates
from .base import Repository, WaiterRegistry
from .telemetry import (
    log_eviction,
    log_fetch_completed,
    log_fetch_error,
    log_fetch_started,
    log_not_found,
    log_reset,
    log_stale_result,
)

EntityT = TypeVar("EntityT")
IdT = TypeVar("IdT", bound=Hashable)


class IndexableRepository(Repository, Generic[EntityT, IdT]):
    """Caches entities by id and deduplicates their loading.

    Example:
        class UserRepository(IndexableRepository[User, int]):
            def extract_id(self, entity: User) -> int:
                return entity.id

            async def fetch_by_id(self, id_: int) -> User | None:
                response = await self._client.get(f"/users/{id_}")
                if response.status == 404:
                    return None
                return User(**await response.json())
    """

    def __init__(self, *, config: RepositoryConfig | None = None) -> None:
        super().__init__(config=config)
        self._entities: dict[IdT, EntityT] = {}
        self._state_by_id: RequestStates[IdT, object | None] = RequestStates()
        self._id_waiters = WaiterRegistry()
        self._mutable_copies: dict[Hashable, dict[IdT, EntityT]] = {}

    @abstractmethod
    async def fetch_by_id(self, id_: IdT) -> EntityT | None:
        """Load one entity.

        Return None if the entity does not exist; raise only for failures.
        """

    @abstractmethod
    def extract_id(self, entity: EntityT) -> IdT:
        """Return the id of ``entity``."""

    # ----------------------
    # Accessors
    # ----------------------
    @property
    def entities(self) -> Mapping[IdT, EntityT]:
        """Read-only view of all cached entities."""
        return MappingProxyType(self._entities)

    def by_id(self, id_: IdT) -> EntityT | None:
        """Return the cached entity, loading it in the background if unknown.

        Never raises; returns None until the entity is loaded.
        """
        if self._state_by_id.is_status(id_, RequestStatus.NONE) and self._has_running_loop():
            self._start_id_fetch(id_)
        return self._entities.get(id_)

    async def by_id_async(self, id_: IdT) -> EntityT | None:
        """Load the entity if needed and return it.

        Returns:
            The entity, or None if the provider reported it as not found

        Raises:
            FetchError: If loading failed (now or in an earlier attempt)
            WaitInterruptedError: If the id was evicted or the repository
                reset while waiting
        """
        await self._load_by_id(id_)
        return self._entities.get(id_)

    def wait_for_id(self, id_: IdT) -> asyncio.Future[None]:
        """Future that settles once ``id_`` is loaded, without starting a load.

        Resolves when a fetch for ``id_`` finishes (DONE or NOT_FOUND); rejects
        when it fails, or when the id is evicted or the repository reset.
        """
        return self._id_waiters.add(self._state_by_id.key_of(id_))

    def is_loaded(self, id_: IdT) -> bool:
        return id_ in self._entities

    def is_known(self, id_: IdT) -> bool:
        """Whether any load of ``id_`` was started and not forgotten since."""
        return not self._state_by_id.is_status(id_, RequestStatus.NONE)

    def status_of(self, id_: IdT) -> RequestStatus:
        return self._state_by_id.status_of(id_)

    def add(self, entity: EntityT) -> None:
        """Put ``entity`` into the cache, replacing any entity with the same id.

        The id is marked DONE and its waiters resolve, so ``by_id`` serves the
        entity without a fetch. A fetch still running for the id is discarded.
        """
        id_ = self.extract_id(entity)
        self._entities[id_] = entity
        self._state_by_id.set_status(id_, RequestStatus.DONE)
        self._id_waiters.settle(self._state_by_id.key_of(id_))

    def __len__(self) -> int:
        return len(self._entities)

    # ----------------------
    # Invalidation
    # ----------------------
    def evict(self, id_: IdT) -> None:
        """Drop ``id_`` from the cache; the next access fetches it again.

        Waiters for ``id_`` are rejected with ``EvictedWhileWaitingError``.
        A fetch still running for ``id_`` completes, but its result is discarded.
        """
        self._entities.pop(id_, None)
        self._id_waiters.settle(
            self._state_by_id.key_of(id_),
            EvictedWhileWaitingError(f"Entity {id_!r} evicted while waiting", key=id_),
        )
        self._state_by_id.delete(id_)
        invalidated = self._evict_dependents(id_)
        log_eviction(repository=self.name, key=id_, queries_invalidated=invalidated)

    def _evict_dependents(self, id_: IdT) -> int:
        """Invalidate cached data derived from ``id_``; returns how many entries were dropped."""
        return 0

    def reset(self) -> None:
        """Forget all entities, id states and mutable copies; reject all id waiters."""
        entities = len(self._entities)
        rejected = self._id_waiters.reject_all(
            lambda waiter: ResetWhileWaitingError("Repository was reset while waiting", key=waiter.key)
        )
        rejected += self._reset_dependents()
        self._state_by_id.reset()
        self._entities.clear()
        self._mutable_copies.clear()
        log_reset(repository=self.name, entities=entities, waiters_rejected=rejected)

    def _reset_dependents(self) -> int:
        """Clear cached data derived from entities; returns how many waiters were rejected."""
        return 0

    async def reload_id(self, id_: IdT) -> EntityT | None:
        """Evict ``id_`` and fetch it again."""
        self.evict(id_)
        return await self.by_id_async(id_)

    # ----------------------
    # Mutable copies
    # ----------------------
    def mutable_copy_by_id(self, batch_id: Hashable, id_: IdT) -> EntityT | None:
        """Return the batch's working copy of ``id_``.

        The copy is cloned from the canonical entity the first time it is
        requested once the entity is loaded; until then the load is started in
        the background and None is returned.
        """
        batch = self._mutable_copies.setdefault(batch_id, {})
        if id_ in batch:
            return batch[id_]
        entity = self.by_id(id_)
        if entity is None:
            return None
        batch[id_] = self.config.clone(entity)
        return batch[id_]

    async def mutable_copy_by_id_async(self, batch_id: Hashable, id_: IdT) -> EntityT | None:
        batch = self._mutable_copies.setdefault(batch_id, {})
        if id_ in batch:
            return batch[id_]
        entity = await self.by_id_async(id_)
        if entity is None:
            return None
        # A reset may have dropped the batch while loading
        batch = self._mutable_copies.setdefault(batch_id, {})
        if id_ not in batch:
            batch[id_] = self.config.clone(entity)
        return batch[id_]

    def set_mutable_copy(self, batch_id: Hashable, id_: IdT, entity: EntityT) -> None:
        self._mutable_copies.setdefault(batch_id, {})[id_] = entity

    def discard_mutable_copy(self, batch_id: Hashable, id_: IdT) -> None:
        """Drop one working copy; the next access clones the canonical entity again."""
        batch = self._mutable_copies.get(batch_id)
        if batch is None:
            return
        batch.pop(id_, None)
        if not batch:
            del self._mutable_copies[batch_id]

    def discard_mutable_copies(self, batch_id: Hashable) -> None:
        self._mutable_copies.pop(batch_id, None)

    def mutable_copies(self, batch_id: Hashable) -> Mapping[IdT, EntityT]:
        """Read-only view of one batch (empty if the batch does not exist)."""
        return MappingProxyType(self._mutable_copies.get(batch_id, {}))

    # ----------------------
    # Loading
    # ----------------------
    async def _load_by_id(self, id_: IdT) -> None:
        while True:
            info = self._state_by_id.get(id_)
            if info.status in (RequestStatus.DONE, RequestStatus.NOT_FOUND):
                return
            if info.status is RequestStatus.ERROR:
                raise info.error  # type: ignore[misc]
            waiter = self.wait_for_id(id_)
            if info.status is RequestStatus.NONE:
                self._start_id_fetch(id_)
            await waiter

    def _start_id_fetch(self, id_: IdT) -> None:
        # The state payload identifies the attempt, so results of an attempt
        # that was evicted or reset in the meantime can be told apart
        attempt = object()
        self._state_by_id.set_status(id_, RequestStatus.IN_PROGRESS)
        self._state_by_id.set_state(id_, attempt)
        self._begin_load()
        self._spawn(lambda: self._fetch_id(id_, attempt))

    def _is_current_id_attempt(self, id_: IdT, attempt: object) -> bool:
        info = self._state_by_id.get(id_)
        return info.status is RequestStatus.IN_PROGRESS and info.state is attempt

    async def _fetch_id(self, id_: IdT, attempt: object) -> None:
        """Run one fetch for ``id_`` and settle its status and waiters. Never raises."""
        started = perf_counter()
        log_fetch_started(repository=self.name, kind="id", key=id_)
        try:
            # Merging the result counts as part of the fetch
            try:
                entity = await self.fetch_by_id(id_)

                if not self._is_current_id_attempt(id_, attempt):
                    log_stale_result(repository=self.name, kind="id", key=id_)
                    return

                if entity is None:
                    log_not_found(repository=self.name, key=id_)
                    self._state_by_id.set_status(id_, RequestStatus.NOT_FOUND)
                    self._id_waiters.settle(self._state_by_id.key_of(id_))
                    return

                received = self.extract_id(entity)
                if received != id_:
                    error = IdentityMismatchError(id_, received)
                    log_fetch_error(
                        repository=self.name,
                        kind="id",
                        key=id_,
                        error_type=type(error).__name__,
                        error_message=str(error),
                    )
                    self._notify_error(error)
                    self._fail_id(id_, attempt, error)
                    return

                self.add(entity)
            except Exception as e:
                log_fetch_error(
                    repository=self.name,
                    kind="id",
                    key=id_,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                self._notify_error(e)
                self._fail_id(id_, attempt, FetchError(f"Fetching {id_!r} failed: {e}", key=id_, error=e))
                return

            log_fetch_completed(
                repository=self.name,
                kind="id",
                key=id_,
                entities=1,
                latency_ms=(perf_counter() - started) * 1000.0,
            )
        finally:
            self._end_load()

    def _fail_id(self, id_: IdT, attempt: object, error: FetchError) -> None:
        if not self._is_current_id_attempt(id_, attempt):
            log_stale_result(repository=self.name, kind="id", key=id_)
            return
        self._state_by_id.set_status(id_, RequestStatus.ERROR, error)
        self._id_waiters.settle(self._state_by_id.key_of(id_), error)

