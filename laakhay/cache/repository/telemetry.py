"""Structured logging for repository loads.

Each helper emits one event-name message with the details in ``extra`` so
log handlers can index them.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..models.segment import Segment

logger = logging.getLogger(__name__)


def _spans(segments: Sequence[Segment]) -> list[tuple[int, int]]:
    return [(segment.offset, segment.count) for segment in segments]


def log_fetch_started(*, repository: str, kind: str, key: Any, window: Segment | None = None) -> None:
    """Log the start of a collaborator fetch.

    Args:
        repository: Repository class name
        kind: "id" or "query"
        key: Requested id or query
        window: Requested segment for paginated fetches
    """
    logger.debug(
        "fetch_started",
        extra={
            "repository": repository,
            "kind": kind,
            "key": repr(key),
            "window": (window.offset, window.count) if window is not None else None,
        },
    )


def log_fetch_completed(
    *,
    repository: str,
    kind: str,
    key: Any,
    entities: int,
    latency_ms: float | None = None,
    window: Segment | None = None,
) -> None:
    """Log a successful fetch.

    Args:
        repository: Repository class name
        kind: "id" or "query"
        key: Requested id or query
        entities: Number of entities received
        latency_ms: Fetch latency in milliseconds (optional)
        window: Requested segment for paginated fetches
    """
    logger.info(
        "fetch_completed",
        extra={
            "repository": repository,
            "kind": kind,
            "key": repr(key),
            "entities": entities,
            "latency_ms": latency_ms,
            "window": (window.offset, window.count) if window is not None else None,
        },
    )


def log_fetch_error(
    *,
    repository: str,
    kind: str,
    key: Any,
    error_type: str,
    error_message: str,
) -> None:
    """Log a failed fetch.

    Args:
        repository: Repository class name
        kind: "id" or "query"
        key: Requested id or query
        error_type: Exception class name
        error_message: Exception message
    """
    logger.error(
        "fetch_error",
        extra={
            "repository": repository,
            "kind": kind,
            "key": repr(key),
            "error_type": error_type,
            "error_message": error_message,
        },
    )


def log_not_found(*, repository: str, key: Any) -> None:
    logger.info("fetch_not_found", extra={"repository": repository, "key": repr(key)})


def log_segment_plan(*, repository: str, query: Any, window: Segment, missing: Sequence[Segment]) -> None:
    """Log which parts of a requested window will be fetched."""
    logger.debug(
        "segment_plan_created",
        extra={
            "repository": repository,
            "query": repr(query),
            "window": (window.offset, window.count),
            "missing_segments": _spans(missing),
            "total_segments": len(missing),
        },
    )


def log_limit_discovered(*, repository: str, query: Any, limit: int) -> None:
    logger.info(
        "query_limit_discovered",
        extra={"repository": repository, "query": repr(query), "limit": limit},
    )


def log_stale_result(*, repository: str, kind: str, key: Any) -> None:
    """Log a fetch result dropped because its request was evicted or reset meanwhile."""
    logger.debug(
        "stale_result_discarded",
        extra={"repository": repository, "kind": kind, "key": repr(key)},
    )


def log_eviction(*, repository: str, key: Any, queries_invalidated: int = 0) -> None:
    logger.debug(
        "entity_evicted",
        extra={
            "repository": repository,
            "key": repr(key),
            "queries_invalidated": queries_invalidated,
        },
    )


def log_reset(*, repository: str, entities: int, waiters_rejected: int) -> None:
    logger.info(
        "repository_reset",
        extra={
            "repository": repository,
            "entities": entities,
            "waiters_rejected": waiters_rejected,
        },
    )
