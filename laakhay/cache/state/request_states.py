"""Per-key request status tracking.

``RequestStates`` records, for each id or query, where its asynchronous load
is in its lifecycle (see ``RequestStatus``) together with a payload created
by a state factory. The same table drives id lookups, query lookups and
paginated query lookups.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from ..core.enums import RequestStatus
from .keys import canonical_key

K = TypeVar("K")
S = TypeVar("S")


@dataclass
class RequestInfo(Generic[K, S]):
    """Status, payload and (for ERROR only) error of one request."""

    key: K
    status: RequestStatus
    state: S
    error: BaseException | None = None


class RequestStates(Generic[K, S]):
    """Table of request information keyed by structurally compared keys.

    Reading an unknown key never mutates the table: it yields a transient
    NONE record with a freshly created state.
    """

    def __init__(
        self,
        state_factory: Callable[[], S] = lambda: None,  # type: ignore[assignment,return-value]
        key_fn: Callable[[Any], Hashable] = canonical_key,
    ) -> None:
        self._state_factory = state_factory
        self._key_fn = key_fn
        self._infos: dict[Hashable, RequestInfo[K, S]] = {}

    def key_of(self, key: K) -> Hashable:
        return self._key_fn(key)

    def get(self, key: K) -> RequestInfo[K, S]:
        info = self._infos.get(self._key_fn(key))
        if info is None:
            return RequestInfo(key=key, status=RequestStatus.NONE, state=self._state_factory())
        return info

    def update(self, info: RequestInfo[K, S]) -> None:
        """Overwrite the stored record for ``info.key``."""
        if info.status is not RequestStatus.ERROR:
            info = replace(info, error=None)
        self._infos[self._key_fn(info.key)] = info

    def set_status(
        self,
        key: K,
        status: RequestStatus,
        error: BaseException | None = None,
    ) -> None:
        """Set the status of ``key``, keeping its state.

        Passing an error always records ERROR.
        """
        current = self.get(key)
        if error is not None:
            status = RequestStatus.ERROR
        self.update(RequestInfo(key=current.key, status=status, state=current.state, error=error))

    def get_state(self, key: K) -> S:
        """State of ``key``; a fresh, unstored one for unknown keys."""
        return self.get(key).state

    def set_state(self, key: K, state: S) -> None:
        current = self.get(key)
        self.update(replace(current, state=state))

    def status_of(self, key: K) -> RequestStatus:
        return self.get(key).status

    def error_of(self, key: K) -> BaseException | None:
        return self.get(key).error

    def is_status(self, key: K, *statuses: RequestStatus) -> bool:
        return self.get(key).status in statuses

    def delete(self, key: K) -> None:
        """Forget ``key``; it reads as NONE afterwards."""
        self._infos.pop(self._key_fn(key), None)

    def reset(self) -> None:
        self._infos.clear()

    def for_each(self, callback: Callable[[RequestInfo[K, S]], None]) -> None:
        """Invoke ``callback`` for every stored record.

        The callback may delete records.
        """
        for info in list(self._infos.values()):
            callback(info)

    def __iter__(self) -> Iterator[RequestInfo[K, S]]:
        return iter(list(self._infos.values()))

    def __contains__(self, key: object) -> bool:
        return self._key_fn(key) in self._infos

    def __len__(self) -> int:
        return len(self._infos)
