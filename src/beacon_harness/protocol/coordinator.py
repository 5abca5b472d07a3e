"""
Protocol round coordinator.

Drives one DKG or resharing round across a set of node agents.

Round shape
-----------
Every round has one leader, the first node of the set. The leader's
invocation is launched first. Followers are launched once the leader had a
head start, each pointed at the leader's private address. A follower that
still cannot reach the leader retries with backoff, so a slow leader only
delays the round.

All invocations then meet at a barrier. Every failure is collected, and the
round aborts if there is at least one. Otherwise the coordinator polls until
every node serves chain info for the new group and checks that all of them
agree on the collective public key.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from beacon_harness.chain.config import (
    BEACON_OFFSET,
    CHAIN_INFO_POLL_INTERVAL,
    LEADER_CONNECT_ATTEMPTS,
    LEADER_STAGGER,
)
from beacon_harness.containers import Group
from beacon_harness.node import NodeAgent
from beacon_harness.types import (
    EmptyRosterError,
    KeyMismatchError,
    LeaderUnreachableError,
    ProtocolRoundError,
)

from .convergence import wait_until_all

logger = logging.getLogger(__name__)

T = TypeVar("T")

Invocation = Callable[[NodeAgent, bool, str], Awaitable[T]]
"""Runs one node's share of a round: (node, is_leader, leader_addr)."""


@dataclass(frozen=True, slots=True)
class RoundOutcome:
    """Result of a completed round."""

    group: Group
    """Group every participant agreed on."""

    duration: float
    """Seconds from launching the leader to the barrier."""

    key_check_duration: float
    """Seconds spent waiting for chain info and comparing keys."""


@dataclass(slots=True)
class ProtocolCoordinator:
    """Runs DKG and resharing rounds with leader/follower fan-out."""

    beacon_offset: int = BEACON_OFFSET
    """Seconds between the end of a round and the first beacon of its group."""

    leader_stagger: float = LEADER_STAGGER
    """Head start given to the leader before followers are launched."""

    leader_connect_attempts: int = LEADER_CONNECT_ATTEMPTS
    """Attempts a follower makes while the leader is unreachable."""

    chain_info_poll_interval: float = CHAIN_INFO_POLL_INTERVAL
    """Pause between two chain-info sweeps."""

    async def _follow(self, node: NodeAgent, invoke: Invocation[T], leader_addr: str) -> T:
        """Run a follower's invocation, retrying while the leader is not listening."""
        attempt = 1
        while True:
            try:
                return await invoke(node, False, leader_addr)
            except LeaderUnreachableError:
                if attempt >= self.leader_connect_attempts:
                    raise
                delay = self.leader_stagger * attempt
                logger.warning(
                    "Node %d cannot reach leader %s yet (attempt %d), retrying in %.1fs",
                    node.index,
                    leader_addr,
                    attempt,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def fan_out(
        self,
        kind: str,
        nodes: Sequence[NodeAgent],
        invoke: Invocation[T],
    ) -> list[T]:
        """
        Launch the leader, then every follower, and wait for all of them.

        Args:
            kind: Round label used in logs and errors.
            nodes: Participants. The first one leads.
            invoke: Per-node invocation.

        Returns:
            Each participant's result, in `nodes` order.

        Raises:
            ProtocolRoundError: With every failure, if any participant failed.
            EmptyRosterError: If `nodes` is empty.
        """
        if not nodes:
            raise EmptyRosterError(f"The {kind} round")
        leader, followers = nodes[0], nodes[1:]
        logger.info("Running %s for leader node %s", kind, leader.private_addr)
        leader_task = asyncio.create_task(invoke(leader, True, ""), name=f"{kind}-leader")

        # Minimum pacing only. Followers retry until the leader listens.
        await asyncio.sleep(self.leader_stagger)

        follower_tasks = []
        for node in followers:
            logger.info("Running %s for node %s", kind, node.private_addr)
            follower_tasks.append(
                asyncio.create_task(
                    self._follow(node, invoke, leader.private_addr),
                    name=f"{kind}-{node.index}",
                )
            )

        results = await asyncio.gather(leader_task, *follower_tasks, return_exceptions=True)

        failures = [
            (node.identity, result)
            for node, result in zip(nodes, results, strict=True)
            if isinstance(result, BaseException)
        ]
        if failures:
            for identity, exc in failures:
                logger.error("%s failed on %s: %r", kind, identity, exc)
            raise ProtocolRoundError(kind, failures)
        return list(results)  # type: ignore[arg-type]

    async def agree(self, nodes: Sequence[NodeAgent], group_path: Path) -> Group:
        """
        Wait until every node serves chain info, then check they share one key.

        Raises:
            KeyMismatchError: If any node reports a different collective key.
            EmptyRosterError: If `nodes` is empty.
        """
        await wait_until_all(
            nodes,
            lambda node: node.chain_info(group_path),
            self.chain_info_poll_interval,
            label="chain info",
        )

        logger.info("Checking all created groups carry the same collective key")
        reference: Group | None = None
        reference_addr = ""
        for node in nodes:
            group = await node.get_group()
            if reference is None:
                reference, reference_addr = group, node.private_addr
                continue
            if not reference.is_equivalent(group):
                raise KeyMismatchError(f"Node {node.private_addr}", reference_addr)
        if reference is None:
            raise EmptyRosterError("Key agreement")
        return reference

    async def run_dkg(
        self,
        nodes: Sequence[NodeAgent],
        threshold: int,
        timeout: int,
        group_path: Path,
    ) -> RoundOutcome:
        """
        Run an initial DKG over `nodes` and return the agreed group.

        Raises:
            ProtocolRoundError: If any node fails its invocation.
            KeyMismatchError: If the nodes end up with different keys.
        """
        logger.info("Running DKG for all %d nodes (threshold %d)", len(nodes), threshold)
        size = len(nodes)

        async def invoke(node: NodeAgent, is_leader: bool, leader_addr: str) -> None:
            await node.run_dkg(size, threshold, timeout, is_leader, leader_addr, self.beacon_offset)

        started = time.monotonic()
        await self.fan_out("dkg", nodes, invoke)
        duration = time.monotonic() - started
        logger.info("Nodes finished running DKG in %.2fs. Checking keys...", duration)

        started = time.monotonic()
        group = await self.agree(nodes, group_path)
        return RoundOutcome(group, duration, time.monotonic() - started)

    async def run_reshare(
        self,
        nodes: Sequence[NodeAgent],
        new_indices: Collection[int],
        threshold: int,
        timeout: int,
        old_group_path: Path,
        new_group_path: Path,
        previous: Group,
    ) -> RoundOutcome:
        """
        Run a resharing over retained and new nodes.

        Only nodes listed in `new_indices` receive the previous group descriptor,
        so that they can join the existing collective key.

        Raises:
            ProtocolRoundError: If any node fails its invocation.
            KeyMismatchError: If the nodes disagree, or the key changed.
        """
        logger.info("Running resharing for %d nodes (threshold %d)", len(nodes), threshold)
        size = len(nodes)

        async def invoke(node: NodeAgent, is_leader: bool, leader_addr: str) -> None:
            source = old_group_path if node.index in new_indices else None
            await node.run_reshare(
                size, threshold, source, timeout, is_leader, leader_addr, self.beacon_offset
            )
            logger.info("Resharing done for node %s", node.private_addr)

        started = time.monotonic()
        await self.fan_out("reshare", nodes, invoke)
        duration = time.monotonic() - started

        started = time.monotonic()
        group = await self.agree(nodes, new_group_path)
        key_check_duration = time.monotonic() - started

        logger.info("Checking the previous collective key is the same as the new one")
        if not previous.is_equivalent(group):
            raise KeyMismatchError("Reshared group", "previous group")
        return RoundOutcome(group, duration, key_check_duration)
