"""
Schedule Clock
==============

Round arithmetic for a randomness beacon.

Rounds start at 1 at genesis and advance once per period. Before genesis the
current round is 0. Every node derives the same round from the same wall-clock
time, so the harness can compute which round to ask for without talking to
any node.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .config import AFTER_PERIOD_WAIT, GENESIS_WAIT

logger = logging.getLogger(__name__)


def round_at(t: float, genesis: int, period: int) -> int:
    """
    Round in progress at time `t`.

    `floor((t - genesis) / period) + 1` once genesis has passed, else 0.
    """
    if t < genesis:
        return 0
    return int((t - genesis) // period) + 1


def time_of_round(round: int, genesis: int, period: int) -> int:
    """Unix time at which `round` starts. Round 0 and round 1 both map to genesis."""
    if round <= 1:
        return genesis
    return genesis + (round - 1) * period


def next_round(t: float, genesis: int, period: int) -> tuple[int, int]:
    """
    Next round to start after `t` and its start time.

    Before genesis the next round is round 1, starting at genesis.
    """
    if t < genesis:
        return 1, genesis
    upcoming = round_at(t, genesis, period) + 1
    return upcoming, time_of_round(upcoming, genesis, period)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True, slots=True)
class ScheduleClock:
    """
    Turns round arithmetic into waits.

    Each wait sleeps past the computed boundary by a safety margin, to absorb
    clock skew and the time nodes take to aggregate a round.
    """

    period: int
    """Seconds between rounds."""

    genesis_wait: float = GENESIS_WAIT
    """Margin added after genesis."""

    after_period_wait: float = AFTER_PERIOD_WAIT
    """Margin added after a round or transition boundary."""

    time_fn: Callable[[], float] = time.time
    """Time source function (injectable for testing)."""

    sleep_fn: Callable[[float], Awaitable[None]] = _sleep
    """Sleep function (injectable for testing)."""

    def now(self) -> float:
        """Current wall-clock time."""
        return self.time_fn()

    def current_round(self, genesis: int) -> int:
        """Round in progress right now."""
        return round_at(self.now(), genesis, self.period)

    def last_completed_round(self, genesis: int) -> int:
        """
        Most recent round every node should already have produced.

        Asking for the next round would race the beacon loop.
        """
        upcoming, _ = next_round(self.now(), genesis, self.period)
        return upcoming - 1

    async def _sleep_until(self, deadline: float) -> None:
        remaining = deadline - self.now()
        if remaining > 0:
            await self.sleep_fn(remaining)

    async def wait_for_genesis(self, genesis: int) -> None:
        """Sleep until genesis, then for the genesis margin."""
        logger.info("Sleeping %ds until genesis happens", max(0, int(genesis - self.now())))
        await self._sleep_until(genesis)
        logger.info("Sleeping %.1fs after genesis to leave time for rounds", self.genesis_wait)
        await self.sleep_fn(self.genesis_wait)

    async def wait_for_transition(self, transition: int, genesis: int) -> None:
        """Sleep until a resharing transition, then for the period margin."""
        logger.info(
            "Sleeping %ds until transition happens (transition time: %d) current round: %d",
            max(0, int(transition - self.now())),
            transition,
            round_at(transition, genesis, self.period),
        )
        await self._sleep_until(transition)
        logger.info(
            "Sleeping %.1fs after transition to leave time for nodes", self.after_period_wait
        )
        await self.sleep_fn(self.after_period_wait)

    async def wait_for_next_period(self, genesis: int) -> int:
        """
        Sleep until the next round has started and had time to propagate.

        Returns:
            The round that started during the wait.
        """
        upcoming, start = next_round(self.now(), genesis, self.period)
        logger.info(
            "Sleeping %ds to reach round %d + %.1fs",
            max(0, int(start - self.now())),
            upcoming,
            self.after_period_wait,
        )
        await self._sleep_until(start + self.after_period_wait)
        return upcoming

    async def wait(self, seconds: float) -> None:
        """Plain pacing sleep, e.g. to let a restarted node catch up."""
        logger.info("Sleeping %.1fs to leave some time to sync and start again", seconds)
        await self.sleep_fn(seconds)
