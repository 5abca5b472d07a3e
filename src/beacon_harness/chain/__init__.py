"""Round arithmetic and timing parameters."""

from .clock import ScheduleClock, next_round, round_at, time_of_round

__all__ = [
    "ScheduleClock",
    "next_round",
    "round_at",
    "time_of_round",
]
