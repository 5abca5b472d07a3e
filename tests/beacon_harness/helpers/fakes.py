"""
In-memory node agents.

A `FakeNetwork` plays the part of the beacon network: it decides the
collective key, the genesis time and the signature of every round. Each
`FakeNode` answers the harness from that shared state, with knobs to make it
slow, wrong or unreachable.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from beacon_harness.containers import (
    BeaconValue,
    Group,
    GroupMember,
    NodeIdentity,
    StorageConfig,
)
from beacon_harness.types import LeaderUnreachableError, OperationalError

GENESIS_TIME = 1_000
"""Genesis time used by fake networks."""

PERIOD = 3
"""Round period used by fake networks."""


def signature_for(round: int, key: bytes) -> bytes:
    """Deterministic stand-in for the threshold signature of `round`."""
    return hashlib.sha256(key + round.to_bytes(8, "big")).digest()


@dataclass
class FakeNode:
    """Node agent answering from a `FakeNetwork`."""

    index: int
    network: FakeNetwork
    public_addr: str = ""

    running: bool = False
    group: Group | None = None
    log_printed: bool = False

    starts: list[StorageConfig] = field(default_factory=list)
    stops: int = 0
    reaped: bool = False

    # Failure knobs.
    start_error: OperationalError | None = None
    boot_pings: int = 0
    never_alive: bool = False
    round_error: Exception | None = None
    unreachable_attempts: int = 0
    chain_info_delay: int = 0
    reported_key: bytes | None = None
    lags: list[int] = field(default_factory=list)
    wrong_signature: bool = False

    def __post_init__(self) -> None:
        if not self.public_addr:
            self.public_addr = f"127.0.0.1:{16000 + self.index}"

    @property
    def identity(self) -> NodeIdentity:
        return NodeIdentity(
            index=self.index, private_addr=self.private_addr, public_addr=self.public_addr
        )

    @property
    def private_addr(self) -> str:
        return f"127.0.0.1:{20000 + self.index}"

    @property
    def ctrl_addr(self) -> str:
        return f"127.0.0.1:{18000 + self.index}"

    # Artifacts

    def write_certificate(self, path: Path) -> None:
        path.write_text(f"certificate of node {self.index}")

    def write_public(self, path: Path) -> None:
        path.write_text(f"public key of node {self.index}")

    # Lifecycle

    async def start(self, cert_dir: Path, storage: StorageConfig) -> None:
        self.starts.append(storage)
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    async def stop(self) -> None:
        self.stops += 1
        self.running = False

    async def wait_stopped(self) -> None:
        self.reaped = not self.running

    async def ping(self) -> bool:
        if not self.running or self.never_alive:
            return False
        if self.boot_pings > 0:
            self.boot_pings -= 1
            return False
        return True

    # Protocol rounds

    def _enter_round(self, kind: str, is_leader: bool, leader_addr: str) -> None:
        self.network.calls.append((kind, self.index, is_leader, leader_addr))
        if not is_leader and self.unreachable_attempts > 0:
            self.unreachable_attempts -= 1
            raise LeaderUnreachableError(f"dial {leader_addr}: connection refused")
        if self.round_error is not None:
            raise self.round_error

    async def run_dkg(
        self,
        cluster_size: int,
        threshold: int,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> None:
        self._enter_round("dkg", is_leader, leader_addr)
        self.group = self.network.group(cluster_size, threshold, self.reported_key)

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
        self.network.reshare_sources[self.index] = old_group_path
        self._enter_round("reshare", is_leader, leader_addr)
        self.group = self.network.group(
            cluster_size,
            threshold,
            self.reported_key or self.network.reshare_key,
            transition_time=self.network.transition_time,
        )

    # Queries

    async def chain_info(self, group_path: Path) -> bool:
        if self.group is None:
            return False
        if self.chain_info_delay > 0:
            self.chain_info_delay -= 1
            return False
        self.group.save(group_path)
        return True

    async def get_group(self) -> Group:
        if self.group is None:
            raise OperationalError(f"node {self.index} has no group")
        return self.group

    async def get_beacon(self, group_path: Path, round: int) -> tuple[BeaconValue, str]:
        if not self.running:
            raise OperationalError(f"node {self.index} is down")
        lag = self.lags.pop(0) if self.lags else 0
        served = max(round - lag, 0)
        value = self.network.beacon(served)
        if self.wrong_signature:
            value = value.model_copy(update={"signature": b"\xff" * 32})
        return value, f"fake get public --round {round} {group_path}"

    def print_log(self) -> None:
        self.log_printed = True


@dataclass
class FakeNetwork:
    """Shared state of a fake beacon network and a factory for its nodes."""

    public_key: bytes = b"\x0a" * 48
    reshare_key: bytes | None = None
    genesis_time: int = GENESIS_TIME
    period: int = PERIOD
    transition_time: int = GENESIS_TIME + 10 * PERIOD

    nodes: dict[int, FakeNode] = field(default_factory=dict)
    calls: list[tuple[str, int, bool, str]] = field(default_factory=list)
    reshare_sources: dict[int, Path | None] = field(default_factory=dict)

    async def factory(self, index: int) -> FakeNode:
        """Node factory handed to the harness."""
        node = FakeNode(index=index, network=self)
        self.nodes[index] = node
        return node

    def make_nodes(self, n: int) -> list[FakeNode]:
        """Nodes 1..n without going through the harness."""
        created = [FakeNode(index=i, network=self) for i in range(1, n + 1)]
        self.nodes.update({node.index: node for node in created})
        return created

    def group(
        self,
        size: int,
        threshold: int,
        key: bytes | None = None,
        *,
        transition_time: int | None = None,
    ) -> Group:
        return Group(
            nodes=tuple(
                GroupMember(index=i, address=f"127.0.0.1:{20001 + i}") for i in range(size)
            ),
            threshold=threshold,
            public_key=key or self.public_key,
            genesis_time=self.genesis_time,
            period=self.period,
            transition_time=transition_time,
        )

    def beacon(self, round: int) -> BeaconValue:
        signature = signature_for(round, self.public_key)
        return BeaconValue(
            round=round,
            signature=signature,
            previous_signature=signature_for(round - 1, self.public_key) if round else None,
            randomness=hashlib.sha256(signature).digest(),
        )
