"""
Cluster lifecycle management.

Creates node agents with sequential identities, emits their artifacts,
starts them and waits for every one of them to answer pings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from beacon_harness.chain.config import STARTUP_POLL_INTERVAL, STARTUP_TIMEOUT
from beacon_harness.containers import StorageConfig
from beacon_harness.node import NodeAgent
from beacon_harness.protocol import wait_until_all_within
from beacon_harness.types import StartupTimeoutError

logger = logging.getLogger(__name__)

NodeFactory = Callable[[int], Awaitable[NodeAgent]]
"""Creates the node agent for an index."""


@dataclass(frozen=True, slots=True)
class CreatedNodes:
    """Nodes created in one batch and the public-key paths they wrote."""

    nodes: tuple[NodeAgent, ...]
    public_paths: tuple[Path, ...]


@dataclass(slots=True)
class ClusterLifecycleManager:
    """
    Owns node creation, start and stop.

    Keeps no roster of its own. Callers pass the nodes an operation applies to.
    """

    factory: NodeFactory
    """Creates one node agent per index."""

    base_path: Path
    """Folder receiving public-key artifacts."""

    cert_dir: Path
    """Folder receiving certificate artifacts, shared with nodes at start."""

    startup_timeout: float = STARTUP_TIMEOUT
    """Deadline for all started nodes to answer pings."""

    poll_interval: float = STARTUP_POLL_INTERVAL
    """Pause between two ping sweeps."""

    _created: list[NodeAgent] = field(default_factory=list, repr=False)
    """Every node created so far, in creation order."""

    @property
    def created(self) -> tuple[NodeAgent, ...]:
        """All nodes created during the run."""
        return tuple(self._created)

    async def create_nodes(self, n: int, offset: int) -> CreatedNodes:
        """
        Create `n` nodes with indices `offset .. offset + n - 1`.

        Each node writes its certificate to `cert_dir/cert-{index}` and its
        public key to `base_path/public-{index}.toml`.

        Raises:
            ArtifactError: If any artifact cannot be written.
        """
        nodes: list[NodeAgent] = []
        for index in range(offset, offset + n):
            node = await self.factory(index)
            node.write_certificate(self.cert_dir / f"cert-{index}")
            nodes.append(node)
            logger.info(
                "Created node %s at %s --> ctrl port: %s",
                node.private_addr,
                self.base_path,
                node.ctrl_addr,
            )

        paths: list[Path] = []
        for node in nodes:
            path = self.base_path / f"public-{node.index}.toml"
            node.write_public(path)
            paths.append(path)

        self._created.extend(nodes)
        return CreatedNodes(nodes=tuple(nodes), public_paths=tuple(paths))

    async def start(self, nodes: Sequence[NodeAgent], storage: StorageConfig) -> None:
        """
        Launch `nodes` and block until all of them answer pings.

        Raises:
            StartupTimeoutError: If some node still does not answer at the deadline.
        """
        logger.info("Starting %d nodes", len(nodes))
        for node in nodes:
            logger.info("Starting node %s", node.private_addr)
            await node.start(self.cert_dir, storage)

        converged = await wait_until_all_within(
            nodes,
            self.ping,
            self.poll_interval,
            self.startup_timeout,
            label="ping",
        )
        if not converged:
            unreachable = [node.index for node in nodes if not await self.ping(node)]
            logger.error("Cannot ping all nodes in %.0f seconds", self.startup_timeout)
            raise StartupTimeoutError(self.startup_timeout, unreachable)

    async def ping(self, node: NodeAgent) -> bool:
        """Liveness probe. A failing probe is expected while a node starts."""
        try:
            return await node.ping()
        except Exception as exc:
            logger.debug("Ping of node %d failed: %r", node.index, exc)
            return False

    async def stop(self, nodes: Sequence[NodeAgent]) -> None:
        """Send a stop signal to each node concurrently. Does not wait for exit."""
        results = await asyncio.gather(*(node.stop() for node in nodes), return_exceptions=True)
        for node, result in zip(nodes, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Stop signal to node %d failed: %r", node.index, result)

    async def wait_stopped(self, nodes: Sequence[NodeAgent]) -> None:
        """Wait for stopped nodes to exit so their ports and folders can be reused."""
        results = await asyncio.gather(
            *(node.wait_stopped() for node in nodes), return_exceptions=True
        )
        for node, result in zip(nodes, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Node %d did not exit cleanly: %r", node.index, result)
