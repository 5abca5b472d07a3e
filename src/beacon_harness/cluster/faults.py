"""
Failure injection.

Stops and restarts nodes by index to check the beacon keeps going while a
minority is down, and that a restarted node picks up where it left off.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from beacon_harness.chain.config import RESTART_ATTEMPTS
from beacon_harness.containers import StorageConfig
from beacon_harness.metrics import node_restarts
from beacon_harness.node import NodeAgent
from beacon_harness.types import NodeRestartError, OperationalError

from .lifecycle import ClusterLifecycleManager
from .roster import find_node

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FailureInjector:
    """Stops and restarts subsets of a roster."""

    lifecycle: ClusterLifecycleManager
    """Used to reach the nodes and their shared certificate folder."""

    storage: StorageConfig
    """Storage the nodes were first started with."""

    restart_attempts: int = RESTART_ATTEMPTS
    """Ping attempts after a restart."""

    backoff_unit: float = 1.0
    """Attempt n sleeps `n**2 * backoff_unit` seconds after a failed ping."""

    _stopped: set[int] = field(default_factory=set)
    """Indices stopped by this injector and not restarted since."""

    @property
    def stopped(self) -> frozenset[int]:
        """Indices currently stopped."""
        return frozenset(self._stopped)

    async def stop_subset(self, roster: Sequence[NodeAgent], indices: Iterable[int]) -> None:
        """
        Stop the roster nodes whose index is listed.

        Indices that are already stopped, or not in the roster, are skipped.
        """
        wanted = set(indices)
        for node in roster:
            if node.index not in wanted or node.index in self._stopped:
                continue
            logger.info("Stopping node %s to simulate a node failure", node.private_addr)
            await node.stop()
            self._stopped.add(node.index)

    async def start_subset(self, roster: Sequence[NodeAgent], indices: Iterable[int]) -> None:
        """
        Restart the listed nodes on their existing on-disk state.

        Raises:
            NodeNotFoundError: If an index is not in the roster.
            NodeRestartError: If a node cannot be launched or never answers pings.
        """
        for index in indices:
            node = find_node(roster, index)
            logger.info("Attempting to start node %s again ...", node.private_addr)
            try:
                await node.start(self.lifecycle.cert_dir, self.storage.for_restart())
            except OperationalError as exc:
                raise NodeRestartError(
                    f"Could not start node {node.private_addr}: {exc.message}"
                ) from exc
            await self._await_alive(node)
            node_restarts.inc()
            self._stopped.discard(index)

    async def _await_alive(self, node: NodeAgent) -> None:
        for trial in range(1, self.restart_attempts + 1):
            if await self.lifecycle.ping(node):
                logger.info("Node %s started correctly", node.private_addr)
                return
            await asyncio.sleep(trial * trial * self.backoff_unit)
        raise NodeRestartError(
            f"Could not start node {node.private_addr} after {self.restart_attempts} pings"
        )
