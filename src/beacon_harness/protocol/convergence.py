"""
Convergence polling.

Distributed rounds finish at different times on different nodes, and the
harness cannot observe them directly. It can only ask each node the same
question again until every node answers yes on the same sweep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

N = TypeVar("N")

Predicate = Callable[[N], Awaitable[bool]]
"""Async question asked of one member."""


async def sweep(members: Sequence[N], predicate: Predicate[N]) -> N | None:
    """
    Ask every member in order, stopping at the first one that answers no.

    Returns:
        The first member failing the predicate, or None when all satisfy it.
    """
    for member in members:
        if not await predicate(member):
            return member
    return None


async def wait_until_all(
    members: Sequence[N],
    predicate: Predicate[N],
    poll_interval: float,
    *,
    label: str = "condition",
) -> None:
    """
    Poll until every member satisfies `predicate` on the same sweep.

    There is no deadline. Callers needing one wrap this with `wait_until_all_within`.

    Args:
        members: Members to ask.
        predicate: Async question asked of each member.
        poll_interval: Sleep between two failed sweeps.
        label: What is being waited for, for logging.
    """
    while True:
        laggard = await sweep(members, predicate)
        if laggard is None:
            logger.info("%s holds on all %d members", label, len(members))
            return
        logger.info(
            "%s not yet met by node %s, sleeping %.1fs",
            label,
            getattr(laggard, "index", laggard),
            poll_interval,
        )
        await asyncio.sleep(poll_interval)


async def wait_until_all_within(
    members: Sequence[N],
    predicate: Predicate[N],
    poll_interval: float,
    timeout: float,
    *,
    label: str = "condition",
) -> bool:
    """
    Same as `wait_until_all`, bounded by `timeout` seconds.

    Returns:
        True if all members converged in time, False on timeout.
    """
    try:
        await asyncio.wait_for(
            wait_until_all(members, predicate, poll_interval, label=label), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("%s not met by all members within %.1fs", label, timeout)
        return False
    return True
