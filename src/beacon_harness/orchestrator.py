"""
Orchestrator: the composition root of a run.

Owns the run configuration and a `ClusterState` snapshot, and sequences the
components into the named phases of a run:

    bring up -> DKG -> genesis -> check -> reshare setup -> reshare
    -> transition -> check new beacon -> failures -> shutdown

Each phase replaces the snapshot rather than mutating it, so a phase only sees
what earlier phases produced.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Collection
from dataclasses import dataclass, field, replace
from pathlib import Path

from beacon_harness.chain import ScheduleClock
from beacon_harness.cluster import (
    ClusterLifecycleManager,
    FailureInjector,
    NodeFactory,
    filter_nodes,
    find_node,
)
from beacon_harness.config import HarnessConfig
from beacon_harness.consistency import ConsistencyChecker, PublicApiClient
from beacon_harness.containers import BeaconValue, Group
from beacon_harness.metrics import (
    cluster_size,
    generate_metrics,
    key_check_duration,
    log_round_timing,
    round_duration,
)
from beacon_harness.node import NodeAgent, NodeSettings, ProcessNode, ProcessNodeFactory
from beacon_harness.protocol import ProtocolCoordinator, RoundOutcome
from beacon_harness.types import ArtifactError, HarnessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClusterState:
    """Immutable snapshot of everything the phases of a run produced so far."""

    threshold: int
    """Threshold of the initial group."""

    nodes: tuple[NodeAgent, ...] = ()
    """Initial roster, in creation order. The first node leads the DKG."""

    public_paths: tuple[Path, ...] = ()
    """Public-key artifacts of the initial roster."""

    new_nodes: tuple[NodeAgent, ...] = ()
    """Nodes created to join at resharing."""

    new_public_paths: tuple[Path, ...] = ()
    """Public-key artifacts of the new nodes."""

    reshare_nodes: tuple[NodeAgent, ...] = ()
    """Retained old nodes followed by the new nodes."""

    reshare_public_paths: tuple[Path, ...] = ()
    """Public-key artifacts of the resharing roster."""

    new_threshold: int | None = None
    """Threshold of the reshared group."""

    group: Group | None = None
    """Group agreed by the DKG. Kept after resharing for comparison."""

    new_group: Group | None = None
    """Group agreed by the resharing."""

    @property
    def all_nodes(self) -> tuple[NodeAgent, ...]:
        """Every node of the run, old and new."""
        return self.nodes + self.new_nodes

    @property
    def genesis(self) -> int:
        """Genesis time of the beacon."""
        if self.group is None:
            raise HarnessError("No group yet: run the DKG first")
        return self.group.genesis_time

    @property
    def transition(self) -> int:
        """Time the reshared group takes over."""
        if self.new_group is None or self.new_group.transition_time is None:
            raise HarnessError("No transition time yet: run the resharing first")
        return self.new_group.transition_time


def prepare_workspace(config: HarnessConfig) -> None:
    """
    Wipe and re-create the run folder and its certificate folder.

    Raises:
        ArtifactError: If the folders cannot be created.
    """
    logger.info("Simulation global folder: %s", config.base_path)
    shutil.rmtree(config.base_path, ignore_errors=True)
    try:
        config.base_path.mkdir(mode=0o740, parents=True)
        config.cert_dir.mkdir(mode=0o740)
    except OSError as exc:
        raise ArtifactError(f"Cannot create run folder {config.base_path}: {exc}") from exc


@dataclass(slots=True)
class Orchestrator:
    """Drives a whole run against a fleet of node agents."""

    config: HarnessConfig
    """Run configuration."""

    factory: NodeFactory
    """Creates node agents."""

    lifecycle: ClusterLifecycleManager
    """Creates, starts and stops nodes."""

    coordinator: ProtocolCoordinator
    """Runs DKG and resharing rounds."""

    checker: ConsistencyChecker
    """Verifies beacon values across nodes."""

    faults: FailureInjector
    """Stops and restarts nodes."""

    clock: ScheduleClock
    """Round arithmetic and waits."""

    state: ClusterState = field(init=False)
    """Current snapshot."""

    def __post_init__(self) -> None:
        self.state = ClusterState(threshold=self.config.threshold)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def assemble(
        cls,
        config: HarnessConfig,
        factory: NodeFactory | None = None,
        clock: ScheduleClock | None = None,
    ) -> Orchestrator:
        """
        Wire every component from the configuration.

        Args:
            config: Run configuration.
            factory: Node factory. Defaults to subprocess nodes running `config.binary`.
            clock: Schedule clock. Defaults to wall-clock time.
        """
        if factory is None:
            factory = ProcessNodeFactory(
                NodeSettings(
                    base_path=config.base_path,
                    binary=config.binary,
                    period=config.period,
                    beacon_id=config.beacon_id,
                    scheme=config.scheme,
                    with_tls=config.with_tls,
                    is_candidate=config.is_candidate,
                    stop_timeout=config.stop_timeout,
                )
            )
        if clock is None:
            clock = ScheduleClock(
                period=config.period,
                genesis_wait=config.genesis_wait,
                after_period_wait=config.after_period_wait,
            )
        lifecycle = ClusterLifecycleManager(
            factory=factory,
            base_path=config.base_path,
            cert_dir=config.cert_dir,
            startup_timeout=config.startup_timeout,
            poll_interval=config.startup_poll_interval,
        )
        return cls(
            config=config,
            factory=factory,
            lifecycle=lifecycle,
            coordinator=ProtocolCoordinator(
                beacon_offset=config.beacon_offset,
                leader_stagger=config.leader_stagger,
                chain_info_poll_interval=config.chain_info_poll_interval,
            ),
            checker=ConsistencyChecker(
                public_api=PublicApiClient(
                    use_tls=config.with_tls, retry_delay=config.after_period_wait
                ),
                check_public_api=config.check_public_api,
            ),
            faults=FailureInjector(lifecycle=lifecycle, storage=config.storage),
            clock=clock,
        )

    @classmethod
    async def create(
        cls,
        config: HarnessConfig,
        factory: NodeFactory | None = None,
        clock: ScheduleClock | None = None,
    ) -> Orchestrator:
        """Prepare the run folder, wire the components and create the initial nodes."""
        prepare_workspace(config)
        orchestrator = cls.assemble(config, factory, clock)
        created = await orchestrator.lifecycle.create_nodes(config.nodes, offset=1)
        orchestrator.state = replace(
            orchestrator.state, nodes=created.nodes, public_paths=created.public_paths
        )
        return orchestrator

    # -------------------------------------------------------------------------
    # Bring up
    # -------------------------------------------------------------------------

    async def start_current_nodes(self, *exclude: int) -> None:
        """Start the initial roster, minus `exclude`."""
        await self.lifecycle.start(filter_nodes(self.state.nodes, exclude), self.config.storage)

    async def start_new_nodes(self) -> None:
        """Start the nodes created for resharing."""
        await self.lifecycle.start(self.state.new_nodes, self.config.storage)

    # -------------------------------------------------------------------------
    # Protocol rounds
    # -------------------------------------------------------------------------

    def _record(self, kind: str, node_count: int, outcome: RoundOutcome) -> None:
        round_duration.labels(kind=kind).observe(outcome.duration)
        key_check_duration.labels(kind=kind).observe(outcome.key_check_duration)
        cluster_size.set(node_count)

    async def run_dkg(self, timeout: int | None = None) -> Group:
        """
        Run the initial DKG and persist the agreed group.

        Raises:
            ProtocolRoundError: If any node fails its invocation.
            KeyMismatchError: If nodes disagree on the collective key.
        """
        nodes = self.state.nodes
        outcome = await self.coordinator.run_dkg(
            nodes,
            self.state.threshold,
            timeout or self.config.dkg_timeout,
            self.config.group_path,
        )
        outcome.group.save(self.config.group_path)
        logger.info("Overwrote group with distributed key to %s", self.config.group_path)

        self.state = replace(self.state, group=outcome.group)
        self._record("dkg", len(nodes), outcome)
        log_round_timing(
            self.config.timing_log, len(nodes), outcome.duration, outcome.key_check_duration
        )
        return outcome.group

    async def setup_new_nodes(self, n: int) -> None:
        """Create `n` nodes that will join at resharing."""
        logger.info("Setting up %d new nodes for resharing", n)
        created = await self.lifecycle.create_nodes(n, offset=len(self.state.nodes) + 1)
        self.state = replace(
            self.state, new_nodes=created.nodes, new_public_paths=created.public_paths
        )

    async def create_resharing_group(self, keep: Collection[int], threshold: int) -> None:
        """
        Build the resharing roster and stop the old nodes leaving it.

        The initial nodes listed in `keep` stay, in roster order, followed by
        every new node. The other initial nodes are stopped.

        Raises:
            NodeNotFoundError: If `keep` names a node that is not in the initial roster.
        """
        logger.info("Setting up the nodes for the resharing")
        wanted = set(keep)
        for index in sorted(wanted):
            find_node(self.state.nodes, index)

        retained: list[NodeAgent] = []
        retained_paths: list[Path] = []
        leaving: list[NodeAgent] = []
        for node, path in zip(self.state.nodes, self.state.public_paths, strict=True):
            if node.index in wanted:
                logger.info("Adding current node %s", node.private_addr)
                retained.append(node)
                retained_paths.append(path)
            else:
                leaving.append(node)
        for node in self.state.new_nodes:
            logger.info("Adding new node %s", node.private_addr)

        self.state = replace(
            self.state,
            reshare_nodes=(*retained, *self.state.new_nodes),
            reshare_public_paths=(*retained_paths, *self.state.new_public_paths),
            new_threshold=threshold,
        )

        if leaving:
            logger.info("Stopping old nodes %s", [node.index for node in leaving])
            await self.lifecycle.stop(leaving)

    async def run_resharing(self, timeout: int | None = None) -> Group:
        """
        Reshare to the resharing roster and persist the new group.

        Raises:
            ProtocolRoundError: If any node fails its invocation.
            KeyMismatchError: If nodes disagree, or the collective key changed.
        """
        if self.state.group is None or self.state.new_threshold is None:
            raise HarnessError("Resharing needs a DKG group and a resharing roster")

        nodes = self.state.reshare_nodes
        outcome = await self.coordinator.run_reshare(
            nodes,
            {node.index for node in self.state.new_nodes},
            self.state.new_threshold,
            timeout or self.config.dkg_timeout,
            self.config.group_path,
            self.config.new_group_path,
            self.state.group,
        )
        outcome.group.save(self.config.new_group_path)
        logger.info("Overwrote reshared group to %s", self.config.new_group_path)

        self.state = replace(self.state, new_group=outcome.group)
        self._record("reshare", len(nodes), outcome)
        return outcome.group

    # -------------------------------------------------------------------------
    # Schedule
    # -------------------------------------------------------------------------

    async def wait_genesis(self) -> None:
        """Sleep until the beacon produced its first rounds."""
        await self.clock.wait_for_genesis(self.state.genesis)

    async def wait_transition(self) -> None:
        """Sleep until the reshared group took over."""
        await self.clock.wait_for_transition(self.state.transition, self.state.genesis)

    async def wait_period(self) -> int:
        """Sleep until the next round is out. Returns that round."""
        return await self.clock.wait_for_next_period(self.state.genesis)

    async def wait(self, seconds: float) -> None:
        """Sleep, e.g. to let a restarted node sync."""
        await self.clock.wait(seconds)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def check_current_beacon(self, *exclude: int) -> BeaconValue:
        """Check the initial roster, minus `exclude`, agrees on the last round."""
        nodes = filter_nodes(self.state.nodes, exclude)
        round = self.clock.last_completed_round(self.state.genesis)
        return await self.checker.check(nodes, self.config.group_path, round)

    async def check_new_beacon(self, *exclude: int) -> BeaconValue:
        """Check the resharing roster, minus `exclude`, agrees on the last round."""
        nodes = filter_nodes(self.state.reshare_nodes, exclude)
        round = self.clock.last_completed_round(self.state.genesis)
        return await self.checker.check(nodes, self.config.new_group_path, round)

    # -------------------------------------------------------------------------
    # Failures
    # -------------------------------------------------------------------------

    async def stop_nodes(self, *indices: int) -> None:
        """Stop the listed nodes to simulate failures."""
        await self.faults.stop_subset(self.state.all_nodes, indices)

    async def stop_all_nodes(self, *exclude: int) -> None:
        """Stop the initial roster, minus `exclude`, for a complete failure."""
        remaining = filter_nodes(self.state.nodes, exclude)
        logger.info("Stopping the rest (%d nodes) for a complete failure", len(remaining))
        await self.faults.stop_subset(remaining, [node.index for node in remaining])

    async def start_node(self, *indices: int) -> None:
        """Restart stopped nodes on their existing state."""
        await self.faults.start_subset(self.state.all_nodes, indices)

    # -------------------------------------------------------------------------
    # Binaries
    # -------------------------------------------------------------------------

    def update_binary(self, binary: str, position: int, is_candidate: bool) -> None:
        """Switch the binary of the initial node at `position` in the roster."""
        node = self.state.nodes[position]
        if isinstance(node, ProcessNode):
            node.update_binary(binary, is_candidate)
        else:
            logger.warning("Node %d does not run a binary, ignoring update", node.index)

    def update_global_binary(self, binary: str, is_candidate: bool) -> None:
        """Switch the binary used for nodes created from now on."""
        if isinstance(self.factory, ProcessNodeFactory):
            self.factory.settings = replace(
                self.factory.settings, binary=binary, is_candidate=is_candidate
            )
        else:
            logger.warning("Node factory does not run binaries, ignoring update")

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def print_logs(self) -> None:
        """Dump every node's log for debugging."""
        logger.info("Printing logs for debugging")
        for node in self.state.all_nodes:
            node.print_log()

    async def shutdown(self) -> None:
        """Stop every node, wait for them to exit and write the collected metrics."""
        logger.info("Shutdown all nodes")
        await self.lifecycle.stop(self.state.all_nodes)
        logger.info("Sent stop command to all nodes")
        await self.lifecycle.wait_stopped(self.state.all_nodes)
        if self.config.shutdown_grace:
            await asyncio.sleep(self.config.shutdown_grace)

        metrics_path = self.config.base_path / "metrics.prom"
        try:
            metrics_path.write_bytes(generate_metrics())
        except OSError as exc:
            logger.error("Cannot write metrics to %s: %s", metrics_path, exc)
