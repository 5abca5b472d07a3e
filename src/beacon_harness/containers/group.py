"""
Group descriptor.

A group is the outcome of a successful DKG or resharing round: who is in the
committee, how many shares are needed, and the collective public key every
beacon value verifies against. Groups are never mutated. A resharing produces a
new group that must keep the old collective key.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_serializer, field_validator, model_validator

from beacon_harness.types import ArtifactError, FrozenModel


def parse_hex(value: Any) -> Any:
    """
    Accept hex strings (with or without 0x) wherever bytes are expected.

    Node binaries print keys and signatures as hex. Other types pass through so
    that pydantic reports them with its usual error.
    """
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"invalid hex string: {value!r}") from exc
    return value


class GroupMember(FrozenModel):
    """One committee member as listed in a group descriptor."""

    index: int = Field(ge=0)
    """Index of the member inside the committee."""

    address: str
    """Private address the member announced for the round."""


class Group(FrozenModel):
    """Committee agreed by a DKG or resharing round."""

    nodes: tuple[GroupMember, ...] = ()
    """Committee membership, in the order the node reported it."""

    threshold: int = Field(ge=1)
    """Number of partial signatures needed for a beacon value."""

    public_key: bytes
    """Collective public key. Two groups are equivalent iff these bytes match."""

    genesis_time: int = Field(ge=0)
    """Unix time at which round 1 starts."""

    period: int = Field(default=30, ge=1)
    """Seconds between rounds."""

    transition_time: int | None = None
    """Unix time at which a reshared group takes over. None for an initial group."""

    beacon_id: str = "default"
    """Beacon identifier the group serves."""

    @field_validator("public_key", mode="before")
    @classmethod
    def _parse_public_key(cls, v: Any) -> Any:
        return parse_hex(v)

    @field_serializer("public_key")
    def _serialize_public_key(self, v: bytes) -> str:
        return v.hex()

    @model_validator(mode="after")
    def _check_threshold(self) -> Group:
        """Reject thresholds larger than a non-empty committee."""
        if self.nodes and self.threshold > len(self.nodes):
            raise ValueError(
                f"threshold {self.threshold} exceeds committee size {len(self.nodes)}"
            )
        return self

    def is_equivalent(self, other: Group) -> bool:
        """Two groups are equivalent when they share a collective key, whatever the members."""
        return self.public_key == other.public_key

    def save(self, path: Path | str) -> None:
        """
        Persist the group descriptor as JSON.

        Raises:
            ArtifactError: If the file cannot be written.
        """
        path = Path(path)
        try:
            path.write_text(self.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        except OSError as exc:
            raise ArtifactError(f"Cannot write group file {path}: {exc}") from exc

    @classmethod
    def load(cls, path: Path | str) -> Group:
        """
        Load a group descriptor written by `save` or by a node.

        Raises:
            ArtifactError: If the file is missing or does not describe a group.
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ArtifactError(f"Cannot load group file {path}: {exc}") from exc
