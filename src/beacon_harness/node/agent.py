"""
Node agent contract.

The harness never looks inside a node. Everything it needs is expressed as
this protocol, so a subprocess-backed node and an in-memory test double are
interchangeable.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from beacon_harness.containers import BeaconValue, Group, NodeIdentity, StorageConfig


class NodeAgent(Protocol):
    """
    Capabilities the harness requires from each node under test.

    Uses structural subtyping - any class with matching methods satisfies the protocol.
    """

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> NodeIdentity:
        """Stable identity assigned at creation."""
        ...

    @property
    def index(self) -> int:
        """Shortcut for `identity.index`."""
        ...

    @property
    def private_addr(self) -> str:
        """Address peers and round followers connect to."""
        ...

    @property
    def public_addr(self) -> str:
        """Address of the public randomness HTTP API."""
        ...

    @property
    def ctrl_addr(self) -> str:
        """Address of the private control port."""
        ...

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    def write_certificate(self, path: Path) -> None:
        """
        Write the node's TLS certificate to `path`.

        Raises:
            ArtifactError: If the file cannot be written.
        """
        ...

    def write_public(self, path: Path) -> None:
        """
        Write the node's public identity key to `path`.

        Raises:
            ArtifactError: If the file cannot be written.
        """
        ...

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, cert_dir: Path, storage: StorageConfig) -> None:
        """
        Launch the node. Returns once the launch was issued, not once it answers pings.

        Raises:
            OperationalError: If the node cannot be launched at all.
        """
        ...

    async def stop(self) -> None:
        """Ask the node to shut down. Best effort, does not wait for confirmation."""
        ...

    async def wait_stopped(self) -> None:
        """
        Wait until a stopped node has released its folder and ports.

        Nodes that are not local processes have nothing to wait for.
        """
        ...

    async def ping(self) -> bool:
        """Liveness probe. False while the node is still starting."""
        ...

    # -------------------------------------------------------------------------
    # Protocol rounds
    # -------------------------------------------------------------------------

    async def run_dkg(
        self,
        cluster_size: int,
        threshold: int,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> None:
        """
        Take part in an initial DKG.

        The leader variant returns once the round it coordinates completes.

        Raises:
            LeaderUnreachableError: A follower could not reach the leader.
            OperationalError: The node failed the round.
        """
        ...

    async def run_reshare(
        self,
        cluster_size: int,
        threshold: int,
        old_group_path: Path | None,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> None:
        """
        Take part in a resharing.

        `old_group_path` is only given to nodes joining an existing collective key.
        The resulting group is read back through `chain_info` once the round is over.

        Raises:
            LeaderUnreachableError: A follower could not reach the leader.
            OperationalError: The node failed the round.
        """
        ...

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def chain_info(self, group_path: Path) -> bool:
        """
        Whether the node has materialized chain and group metadata.

        When it has, the node's group descriptor is written to `group_path`.
        """
        ...

    async def get_group(self) -> Group:
        """The group the node currently serves."""
        ...

    async def get_beacon(self, group_path: Path, round: int) -> tuple[BeaconValue, str]:
        """
        Beacon value for `round` through the control path.

        Returns:
            The value and an example command reproducing the query by hand.
        """
        ...

    def print_log(self) -> None:
        """Dump the node's own log through the harness logger."""
        ...
