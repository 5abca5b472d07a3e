"""Prometheus metrics and round timing log."""

from .registry import (
    REGISTRY,
    beacon_check_retries,
    beacon_checks,
    cluster_size,
    generate_metrics,
    key_check_duration,
    node_restarts,
    round_duration,
)
from .timing_log import format_timing, log_round_timing

__all__ = [
    "REGISTRY",
    "beacon_check_retries",
    "beacon_checks",
    "cluster_size",
    "format_timing",
    "generate_metrics",
    "key_check_duration",
    "log_round_timing",
    "node_restarts",
    "round_duration",
]
