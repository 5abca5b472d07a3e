"""Roster helpers: node lists kept in creation order."""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from typing import TypeVar

from beacon_harness.node import NodeAgent
from beacon_harness.types import NodeNotFoundError

N = TypeVar("N", bound=NodeAgent)


def filter_nodes(roster: Sequence[N], exclude: Iterable[int] = ()) -> list[N]:
    """
    Drop the excluded indices and shuffle the rest.

    Roster-wide checks run in random order so that no node is always the
    one establishing the reference value.
    """
    excluded = set(exclude)
    kept = [node for node in roster if node.index not in excluded]
    random.shuffle(kept)
    return kept


def find_node(roster: Sequence[N], index: int) -> N:
    """
    Node with the given index.

    Raises:
        NodeNotFoundError: If no node in the roster has that index.
    """
    for node in roster:
        if node.index == index:
            return node
    raise NodeNotFoundError(index)
