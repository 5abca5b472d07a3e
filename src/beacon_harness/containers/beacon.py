"""Beacon values returned by the control path and by the public HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_serializer, field_validator

from beacon_harness.types import FrozenModel

from .group import parse_hex


class BeaconValue(FrozenModel):
    """
    One round of randomness as reported by a node.

    Two values are consistent iff equal rounds imply equal signatures.
    A round difference alone only means one node is lagging.
    """

    round: int = Field(ge=0)
    """Beacon round the value belongs to."""

    signature: bytes
    """Threshold signature over the round."""

    previous_signature: bytes | None = None
    """Signature of the previous round, for chained schemes."""

    randomness: bytes | None = None
    """Hash of the signature, as served by the public API."""

    @field_validator("signature", "previous_signature", "randomness", mode="before")
    @classmethod
    def _parse_hex_fields(cls, v: Any) -> Any:
        return parse_hex(v)

    @field_serializer("signature", "previous_signature", "randomness")
    def _serialize_hex_fields(self, v: bytes | None) -> str | None:
        return None if v is None else v.hex()
