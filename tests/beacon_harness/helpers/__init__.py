"""Test helpers for beacon harness tests."""

from .clock import ManualTime, make_clock
from .fakes import GENESIS_TIME, PERIOD, FakeNetwork, FakeNode, signature_for
from .public_server import PublicApiServer

__all__ = [
    "GENESIS_TIME",
    "PERIOD",
    "FakeNetwork",
    "FakeNode",
    "ManualTime",
    "PublicApiServer",
    "make_clock",
    "signature_for",
]
