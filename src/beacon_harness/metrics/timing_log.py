"""Append-only CSV log of round timings, one line per DKG or resharing."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def format_timing(node_count: int, duration: float, key_check_duration: float) -> str:
    """Format one `nodeCount,totalDuration,keyCheckDuration` line."""
    return f"{node_count},{duration:.6f}s,{key_check_duration:.6f}s\n"


def log_round_timing(
    path: Path, node_count: int, duration: float, key_check_duration: float
) -> None:
    """
    Append a timing line to `path`.

    A failed write is logged and otherwise ignored. Timings are informational.
    """
    try:
        with path.open("a", encoding="utf-8") as f:
            f.write(format_timing(node_count, duration, key_check_duration))
    except OSError as exc:
        logger.error("Error writing round timing to %s: %s", path, exc)
