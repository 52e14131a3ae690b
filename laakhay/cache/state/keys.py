"""Canonical, hashable keys for ids and queries.

Queries are often plain dicts or models, which are unhashable and whose
field order is not meaningful. ``canonical_key`` maps structurally equal
values to equal keys so that state tables and waiter matching agree on one
notion of "the same query".
"""

from __future__ import annotations

import dataclasses
from collections.abc import Hashable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel


def canonical_key(value: Any) -> Hashable:
    """Return a hashable key for ``value`` that ignores mapping order.

    Lists and tuples map to the same key; sets and frozensets likewise.
    Pydantic models and dataclasses are keyed by type name and field values.
    """
    if value is None or isinstance(value, (str, bytes, int, float, Enum)):
        return value
    if isinstance(value, BaseModel):
        return (type(value).__qualname__, canonical_key(value.model_dump()))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return (type(value).__qualname__, canonical_key(dataclasses.asdict(value)))
    if isinstance(value, Mapping):
        items = ((canonical_key(k), canonical_key(v)) for k, v in value.items())
        return ("__mapping__", tuple(sorted(items, key=repr)))
    if isinstance(value, (list, tuple)):
        return ("__sequence__", tuple(canonical_key(v) for v in value))
    if isinstance(value, (set, frozenset)):
        return ("__set__", frozenset(canonical_key(v) for v in value))
    if isinstance(value, Hashable):
        return value
    raise TypeError(f"Cannot derive a cache key from {type(value).__name__}")
