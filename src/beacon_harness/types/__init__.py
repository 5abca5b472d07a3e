"""Shared model bases and the exception hierarchy."""

from .base import CamelModel, FrozenModel
from .exceptions import (
    ArtifactError,
    BeaconMismatchError,
    EmptyRosterError,
    HarnessError,
    InvariantViolation,
    KeyMismatchError,
    LeaderUnreachableError,
    NodeCommandError,
    NodeNotFoundError,
    NodeRestartError,
    OperationalError,
    ProtocolRoundError,
    PublicApiError,
    PublicApiMismatchError,
    StartupTimeoutError,
)

__all__ = [
    # Models
    "CamelModel",
    "FrozenModel",
    # Exceptions
    "HarnessError",
    "EmptyRosterError",
    "InvariantViolation",
    "KeyMismatchError",
    "BeaconMismatchError",
    "PublicApiMismatchError",
    "OperationalError",
    "StartupTimeoutError",
    "NodeRestartError",
    "NodeNotFoundError",
    "ArtifactError",
    "NodeCommandError",
    "LeaderUnreachableError",
    "PublicApiError",
    "ProtocolRoundError",
]
