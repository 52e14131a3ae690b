"""Core enumerations."""

from enum import Enum


class RequestStatus(str, Enum):
    """Lifecycle of one asynchronous request (an id or a query).

    NONE is never stored: it is what an unknown key reports.
    """

    NONE = "none"
    IN_PROGRESS = "in progress"
    DONE = "done"
    ERROR = "error"
    NOT_FOUND = "not found"

    @property
    def is_terminal(self) -> bool:
        """Whether a request in this status will not change without eviction or reset."""
        return self in (RequestStatus.DONE, RequestStatus.ERROR, RequestStatus.NOT_FOUND)
