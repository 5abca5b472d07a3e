"""Node identity: how the harness names a node for its whole lifetime."""

from __future__ import annotations

from pydantic import Field

from beacon_harness.types import FrozenModel


class NodeIdentity(FrozenModel):
    """
    Stable identity of one node under test.

    Assigned at creation and never reused within a run.
    """

    index: int = Field(gt=0)
    """Unique positive index. Also the key of the node's artifact paths."""

    private_addr: str
    """host:port the node uses for protocol traffic with its peers."""

    public_addr: str
    """host:port serving the public randomness HTTP API."""

    def __str__(self) -> str:
        return f"node {self.index} ({self.private_addr})"
