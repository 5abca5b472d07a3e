"""
Metric registry using prometheus_client.

Records how long protocol rounds take and how often consistency checks had
to retry, so that runs over different cluster sizes can be compared.
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Dedicated registry, free of default Python process metrics.
REGISTRY = CollectorRegistry()

# -----------------------------------------------------------------------------
# Protocol Rounds
# -----------------------------------------------------------------------------

round_duration = Histogram(
    "beacon_harness_round_seconds",
    "Time from launching the leader to the round barrier",
    ["kind"],
    buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0, 160.0),
    registry=REGISTRY,
)

key_check_duration = Histogram(
    "beacon_harness_key_check_seconds",
    "Time spent waiting for chain info and comparing collective keys",
    ["kind"],
    buckets=(0.5, 1.0, 3.0, 6.0, 12.0, 30.0, 60.0),
    registry=REGISTRY,
)

cluster_size = Gauge(
    "beacon_harness_cluster_size",
    "Number of nodes taking part in the latest round",
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Consistency Checks
# -----------------------------------------------------------------------------

beacon_checks = Counter(
    "beacon_harness_beacon_checks_total",
    "Beacon values compared against the reference",
    ["path"],
    registry=REGISTRY,
)

beacon_check_retries = Counter(
    "beacon_harness_beacon_check_retries_total",
    "Beacon queries repeated because of lag or an unusable response",
    ["path"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Failure Injection
# -----------------------------------------------------------------------------

node_restarts = Counter(
    "beacon_harness_node_restarts_total",
    "Nodes restarted after an injected failure",
    registry=REGISTRY,
)


def generate_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(REGISTRY)
