"""Beacon consistency checks over the control path and the public API."""

from .checker import ConsistencyChecker, check_consistent, check_public_matches
from .public_api import PublicApiClient

__all__ = [
    "ConsistencyChecker",
    "PublicApiClient",
    "check_consistent",
    "check_public_matches",
]
