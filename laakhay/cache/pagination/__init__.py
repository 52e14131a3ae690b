"""Pagination bookkeeping for windowed queries."""

from .range import PaginationRange
from .state import PaginationState

__all__ = ["PaginationRange", "PaginationState"]
