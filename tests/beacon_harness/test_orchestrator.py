"""
Tests for the orchestrator.

Every phase of a run is driven against in-memory nodes and a manual clock,
so schedule waits complete instantly while still following round arithmetic.
"""

from __future__ import annotations

import pytest

from beacon_harness.config import HarnessConfig
from beacon_harness.containers import Group
from beacon_harness.node import ProcessNodeFactory
from beacon_harness.orchestrator import Orchestrator, prepare_workspace
from beacon_harness.types import (
    EmptyRosterError,
    HarnessError,
    NodeNotFoundError,
    OperationalError,
    ProtocolRoundError,
)
from tests.beacon_harness.helpers import GENESIS_TIME, FakeNetwork, ManualTime, make_clock


@pytest.fixture
def manual() -> ManualTime:
    """Time twenty seconds before genesis."""
    return ManualTime(now=GENESIS_TIME - 20)


@pytest.fixture
async def orchestrator(
    fast_config: HarnessConfig, network: FakeNetwork, manual: ManualTime
) -> Orchestrator:
    """Orchestrator over four fake nodes, already created."""
    clock = make_clock(manual, period=fast_config.period)
    return await Orchestrator.create(fast_config, factory=network.factory, clock=clock)


async def run_dkg(orchestrator: Orchestrator) -> Group:
    await orchestrator.start_current_nodes()
    return await orchestrator.run_dkg()


class TestCreate:
    """Tests for preparing a run."""

    async def test_workspace_and_nodes(
        self, orchestrator: Orchestrator, fast_config: HarnessConfig
    ) -> None:
        """The run folder holds the certificates and every public key."""
        assert [node.index for node in orchestrator.state.nodes] == [1, 2, 3, 4]
        assert fast_config.cert_dir.is_dir()
        assert orchestrator.state.public_paths == tuple(
            fast_config.base_path / f"public-{i}.toml" for i in range(1, 5)
        )
        assert all(path.exists() for path in orchestrator.state.public_paths)

    def test_prepare_workspace_wipes_previous_run(self, fast_config: HarnessConfig) -> None:
        """Leftovers of an earlier run are removed."""
        fast_config.base_path.mkdir()
        stale = fast_config.base_path / "group.toml"
        stale.write_text("stale")

        prepare_workspace(fast_config)

        assert not stale.exists()
        assert fast_config.cert_dir.is_dir()

    def test_default_factory_runs_binaries(self, fast_config: HarnessConfig) -> None:
        """Without a factory, nodes are subprocesses of the configured binary."""
        orchestrator = Orchestrator.assemble(fast_config)
        assert isinstance(orchestrator.factory, ProcessNodeFactory)

        orchestrator.update_global_binary("drand-next", is_candidate=True)

        assert orchestrator.factory.settings.binary == "drand-next"
        assert orchestrator.factory.settings.is_candidate


class TestDkg:
    """Tests for the initial DKG."""

    async def test_run_dkg(
        self,
        orchestrator: Orchestrator,
        network: FakeNetwork,
        fast_config: HarnessConfig,
    ) -> None:
        """The agreed group is persisted, kept in the state and timed."""
        group = await run_dkg(orchestrator)

        assert all(node.running for node in network.nodes.values())
        assert group.public_key == network.public_key
        assert orchestrator.state.group == group
        assert Group.load(fast_config.group_path) == group
        assert fast_config.timing_log.read_text().startswith("4,")

    async def test_start_excluding(self, orchestrator: Orchestrator, network: FakeNetwork) -> None:
        """Excluded nodes are not started."""
        await orchestrator.start_current_nodes(2)
        assert not network.nodes[2].running
        assert network.nodes[1].running

    async def test_dkg_failure(self, orchestrator: Orchestrator, network: FakeNetwork) -> None:
        """A failed participant fails the DKG and leaves no group behind."""
        network.nodes[3].round_error = OperationalError("dkg timeout")

        with pytest.raises(ProtocolRoundError):
            await run_dkg(orchestrator)

        assert orchestrator.state.group is None

    async def test_schedule_needs_a_group(self, orchestrator: Orchestrator) -> None:
        """Waiting for genesis needs a genesis time."""
        with pytest.raises(HarnessError):
            await orchestrator.wait_genesis()


class TestChecks:
    """Tests for beacon checks and failures."""

    async def test_check_after_genesis(
        self, orchestrator: Orchestrator, network: FakeNetwork, manual: ManualTime
    ) -> None:
        """After genesis, nodes are checked on the last completed round."""
        await run_dkg(orchestrator)

        await orchestrator.wait_genesis()
        reference = await orchestrator.check_current_beacon()

        assert manual.now == GENESIS_TIME + 3
        assert reference == network.beacon(2)

    async def test_failed_node_is_skipped(
        self, orchestrator: Orchestrator, network: FakeNetwork
    ) -> None:
        """The beacon is checked on the nodes left up, then on the restarted node."""
        await run_dkg(orchestrator)
        await orchestrator.wait_genesis()

        await orchestrator.stop_nodes(4)
        round = await orchestrator.wait_period()
        reference = await orchestrator.check_current_beacon(4)
        assert reference.round == round
        assert not network.nodes[4].running

        await orchestrator.start_node(4)
        await orchestrator.wait_period()
        await orchestrator.check_current_beacon()
        assert network.nodes[4].running
        assert network.nodes[4].starts[-1].engine is None

    async def test_including_a_stopped_node_fails(
        self, orchestrator: Orchestrator, network: FakeNetwork
    ) -> None:
        """A stopped node left in the check does not answer."""
        await run_dkg(orchestrator)
        await orchestrator.wait_genesis()
        await orchestrator.stop_nodes(2)

        with pytest.raises(OperationalError):
            await orchestrator.check_current_beacon()

    async def test_excluding_every_node(self, orchestrator: Orchestrator) -> None:
        """Excluding the whole roster from a check is a harness error."""
        await run_dkg(orchestrator)
        await orchestrator.wait_genesis()

        with pytest.raises(EmptyRosterError):
            await orchestrator.check_current_beacon(1, 2, 3, 4)

    async def test_stop_all_nodes(self, orchestrator: Orchestrator, network: FakeNetwork) -> None:
        """A complete failure stops everything but the excluded nodes."""
        await run_dkg(orchestrator)

        await orchestrator.stop_all_nodes(1)

        assert [node.running for node in network.nodes.values()] == [True, False, False, False]


class TestResharing:
    """Tests for resharing to a new committee."""

    async def test_full_resharing(
        self,
        orchestrator: Orchestrator,
        network: FakeNetwork,
        fast_config: HarnessConfig,
        manual: ManualTime,
    ) -> None:
        """One old node leaves, two new nodes join, the key stays."""
        group = await run_dkg(orchestrator)
        await orchestrator.wait_genesis()

        await orchestrator.setup_new_nodes(2)
        await orchestrator.create_resharing_group([2, 3, 4], 3)
        await orchestrator.start_new_nodes()
        new_group = await orchestrator.run_resharing()
        await orchestrator.wait_transition()
        reference = await orchestrator.check_new_beacon()

        state = orchestrator.state
        assert [node.index for node in state.new_nodes] == [5, 6]
        assert [node.index for node in state.reshare_nodes] == [2, 3, 4, 5, 6]
        assert state.reshare_public_paths[-1] == fast_config.base_path / "public-6.toml"
        assert not network.nodes[1].running
        assert network.reshare_sources[5] == fast_config.group_path
        assert network.reshare_sources[2] is None
        assert new_group.is_equivalent(group)
        assert Group.load(fast_config.new_group_path) == new_group
        assert manual.now == network.transition_time + 1
        assert reference.round >= 1

    async def test_keep_nodes_by_index(
        self, fast_config: HarnessConfig, network: FakeNetwork, manual: ManualTime
    ) -> None:
        """Nodes 1, 2 and 3 at threshold 2 reshare to nodes 1, 2, 4 and 5 at threshold 3."""
        config = fast_config.with_overrides(nodes=3, threshold=2)
        orchestrator = await Orchestrator.create(
            config, factory=network.factory, clock=make_clock(manual, period=config.period)
        )
        group = await run_dkg(orchestrator)

        await orchestrator.setup_new_nodes(2)
        await orchestrator.create_resharing_group([1, 2], 3)
        await orchestrator.start_new_nodes()
        new_group = await orchestrator.run_resharing()

        state = orchestrator.state
        assert [node.index for node in state.reshare_nodes] == [1, 2, 4, 5]
        assert state.reshare_public_paths == tuple(
            config.base_path / f"public-{i}.toml" for i in (1, 2, 4, 5)
        )
        assert not network.nodes[3].running
        assert network.nodes[1].running
        assert network.calls[-4] == ("reshare", 1, True, "")
        assert new_group.threshold == 3
        assert new_group.is_equivalent(group)

    async def test_keep_unknown_node(
        self, orchestrator: Orchestrator, network: FakeNetwork
    ) -> None:
        """Keeping a node that is not in the initial roster is refused before anything stops."""
        await run_dkg(orchestrator)

        with pytest.raises(NodeNotFoundError):
            await orchestrator.create_resharing_group([1, 9], 3)

        assert all(node.running for node in network.nodes.values())

    async def test_resharing_needs_a_dkg(self, orchestrator: Orchestrator) -> None:
        """Resharing without an initial group is refused."""
        with pytest.raises(HarnessError):
            await orchestrator.run_resharing()


class TestTeardown:
    """Tests for debugging output and shutdown."""

    async def test_print_logs(self, orchestrator: Orchestrator, network: FakeNetwork) -> None:
        """Every node's log is dumped."""
        orchestrator.print_logs()
        assert all(node.log_printed for node in network.nodes.values())

    async def test_shutdown(
        self,
        orchestrator: Orchestrator,
        network: FakeNetwork,
        fast_config: HarnessConfig,
    ) -> None:
        """Shutdown stops every node, waits for it to exit and writes the metrics."""
        await run_dkg(orchestrator)

        await orchestrator.shutdown()

        assert not any(node.running for node in network.nodes.values())
        assert all(node.reaped for node in network.nodes.values())
        metrics = (fast_config.base_path / "metrics.prom").read_text()
        assert "beacon_harness_round_seconds" in metrics

    async def test_update_binary_on_fake_node(
        self, orchestrator: Orchestrator, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Nodes that do not run a binary ignore binary updates."""
        orchestrator.update_binary("drand-next", 0, is_candidate=False)
        assert "does not run a binary" in caplog.text
