"""Data model shared by every harness component."""

from .beacon import BeaconValue
from .group import Group, GroupMember, parse_hex
from .identity import NodeIdentity
from .storage import StorageConfig, StorageEngine

__all__ = [
    "BeaconValue",
    "Group",
    "GroupMember",
    "NodeIdentity",
    "StorageConfig",
    "StorageEngine",
    "parse_hex",
]
