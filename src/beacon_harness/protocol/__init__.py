"""Round coordination and convergence polling."""

from .convergence import sweep, wait_until_all, wait_until_all_within
from .coordinator import ProtocolCoordinator, RoundOutcome

__all__ = [
    "ProtocolCoordinator",
    "RoundOutcome",
    "sweep",
    "wait_until_all",
    "wait_until_all_within",
]
