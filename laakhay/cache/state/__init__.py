"""Request state tracking."""

from .keys import canonical_key
from .request_states import RequestInfo, RequestStates

__all__ = ["RequestInfo", "RequestStates", "canonical_key"]
