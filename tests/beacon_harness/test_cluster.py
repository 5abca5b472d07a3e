"""Tests for node creation, start and stop, and the roster helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from beacon_harness.cluster import ClusterLifecycleManager, filter_nodes, find_node
from beacon_harness.containers import StorageConfig
from beacon_harness.types import NodeNotFoundError, StartupTimeoutError
from tests.beacon_harness.helpers import FakeNetwork


@pytest.fixture
def lifecycle(network: FakeNetwork, tmp_path: Path) -> ClusterLifecycleManager:
    """Lifecycle manager over fake nodes with short startup timings."""
    (tmp_path / "certs").mkdir()
    return ClusterLifecycleManager(
        factory=network.factory,
        base_path=tmp_path,
        cert_dir=tmp_path / "certs",
        startup_timeout=0.2,
        poll_interval=0.01,
    )


class TestCreateNodes:
    """Tests for node creation and artifacts."""

    async def test_sequential_indices(self, lifecycle: ClusterLifecycleManager) -> None:
        """Indices start at the offset and follow each other."""
        created = await lifecycle.create_nodes(3, offset=5)
        assert [node.index for node in created.nodes] == [5, 6, 7]
        assert lifecycle.created == created.nodes

    async def test_artifacts(self, lifecycle: ClusterLifecycleManager, tmp_path: Path) -> None:
        """Each node writes its certificate and public key to indexed paths."""
        created = await lifecycle.create_nodes(2, offset=1)

        assert created.public_paths == (tmp_path / "public-1.toml", tmp_path / "public-2.toml")
        assert (tmp_path / "public-2.toml").read_text() == "public key of node 2"
        assert (tmp_path / "certs" / "cert-1").read_text() == "certificate of node 1"

    async def test_created_accumulates(self, lifecycle: ClusterLifecycleManager) -> None:
        """Later batches add to the nodes created so far."""
        await lifecycle.create_nodes(2, offset=1)
        await lifecycle.create_nodes(1, offset=3)
        assert [node.index for node in lifecycle.created] == [1, 2, 3]


class TestStart:
    """Tests for starting nodes."""

    async def test_waits_for_pings(
        self, network: FakeNetwork, lifecycle: ClusterLifecycleManager
    ) -> None:
        """Start returns once every node answers, even slow ones."""
        created = await lifecycle.create_nodes(3, offset=1)
        network.nodes[2].boot_pings = 3
        storage = StorageConfig()

        await lifecycle.start(created.nodes, storage)

        assert all(node.running for node in network.nodes.values())
        assert network.nodes[1].starts == [storage]

    async def test_timeout_names_unreachable_nodes(
        self, network: FakeNetwork, lifecycle: ClusterLifecycleManager
    ) -> None:
        """Nodes that never answer are listed in the error."""
        created = await lifecycle.create_nodes(3, offset=1)
        network.nodes[3].never_alive = True

        with pytest.raises(StartupTimeoutError) as exc_info:
            await lifecycle.start(created.nodes, StorageConfig())

        assert exc_info.value.unreachable == [3]

    async def test_failing_probe_is_not_alive(
        self, network: FakeNetwork, lifecycle: ClusterLifecycleManager
    ) -> None:
        """A probe raising an error counts as no answer."""
        [node] = network.make_nodes(1)

        async def broken() -> bool:
            raise ConnectionError("refused")

        node.ping = broken  # type: ignore[method-assign]

        assert not await lifecycle.ping(node)


class TestStop:
    """Tests for stopping nodes."""

    async def test_stop_signals_every_node(
        self, network: FakeNetwork, lifecycle: ClusterLifecycleManager
    ) -> None:
        """Every node receives a stop signal, even when another one fails."""
        created = await lifecycle.create_nodes(3, offset=1)
        await lifecycle.start(created.nodes, StorageConfig())

        async def broken() -> None:
            raise ConnectionError("gone")

        network.nodes[1].stop = broken  # type: ignore[method-assign]

        await lifecycle.stop(created.nodes)

        assert not network.nodes[2].running
        assert not network.nodes[3].running


class TestRoster:
    """Tests for roster helpers."""

    def test_filter_nodes_excludes(self, network: FakeNetwork) -> None:
        """Excluded indices are dropped, the rest is kept in some order."""
        nodes = network.make_nodes(5)
        kept = filter_nodes(nodes, [2, 4])
        assert sorted(node.index for node in kept) == [1, 3, 5]

    def test_filter_nodes_does_not_touch_roster(self, network: FakeNetwork) -> None:
        """The roster keeps its creation order."""
        nodes = network.make_nodes(5)
        filter_nodes(nodes)
        assert [node.index for node in nodes] == [1, 2, 3, 4, 5]

    def test_find_node(self, network: FakeNetwork) -> None:
        """Nodes are found by index, unknown indices are an error."""
        nodes = network.make_nodes(3)
        assert find_node(nodes, 2) is nodes[1]
        with pytest.raises(NodeNotFoundError):
            find_node(nodes, 9)
