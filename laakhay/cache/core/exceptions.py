"""Custom exception hierarchy."""

from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for all cache errors."""

    pass


class FetchError(RepositoryError):
    """A fetch collaborator raised while loading an id or a query.

    The raw exception raised by the collaborator is kept on ``error`` and as
    the exception's ``__cause__``. Error listeners receive the raw exception,
    awaiting callers receive this wrapper.
    """

    def __init__(self, message: str, key: Any = None, error: BaseException | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.error = error
        if error is not None:
            self.__cause__ = error


class IdentityMismatchError(FetchError):
    """Fetched entity carries a different id than the one requested."""

    def __init__(self, requested: Any, received: Any) -> None:
        super().__init__(
            f"Fetched entity has id {received!r} but {requested!r} was requested",
            key=requested,
        )
        self.requested = requested
        self.received = received


class WaitInterruptedError(RepositoryError):
    """A waiter was rejected without its request settling."""

    def __init__(self, message: str, key: Any = None) -> None:
        super().__init__(message)
        self.key = key


class EvictedWhileWaitingError(WaitInterruptedError):
    """The awaited entity (or an entity of the awaited query) was evicted."""

    pass


class ResetWhileWaitingError(WaitInterruptedError):
    """The repository was reset while the caller was waiting."""

    pass


class SegmentInvariantError(RepositoryError, ValueError):
    """Segment id data is inconsistent with its positions."""

    pass
