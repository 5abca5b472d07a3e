"""
Shared pytest fixtures for all beacon harness tests.

Provides a fake network, its nodes and a fast run configuration.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from beacon_harness.config import HarnessConfig
from tests.beacon_harness.helpers import FakeNetwork, PublicApiServer


@pytest.fixture
def network() -> FakeNetwork:
    """Fresh fake beacon network."""
    return FakeNetwork()


@pytest.fixture
def fast_config(tmp_path: Path) -> HarnessConfig:
    """Configuration with every pause shortened for in-memory nodes."""
    return HarnessConfig(
        nodes=4,
        threshold=3,
        base_path=tmp_path / "run",
        check_public_api=False,
        leader_stagger=0,
        startup_timeout=1.0,
        startup_poll_interval=0.01,
        chain_info_poll_interval=0.01,
        timing_log=tmp_path / "timings.csv",
    )


@pytest.fixture
async def public_server(network: FakeNetwork) -> AsyncIterator[PublicApiServer]:
    """Public API served from the fake network on an ephemeral port."""
    server = PublicApiServer(network)
    await server.start()
    yield server
    await server.stop()
