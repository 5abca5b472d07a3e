"""
Port allocation for node processes.

Provides thread-safe allocation of local ports so that nodes created in the
same run never collide.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

BASE_PRIVATE_PORT = 20600
"""Starting port for node-to-node protocol traffic."""

BASE_PUBLIC_PORT = 16652
"""Starting port for public HTTP APIs."""

BASE_CONTROL_PORT = 18888
"""Starting port for private control ports."""


@dataclass(slots=True)
class NodePorts:
    """The three ports a node listens on."""

    private: int
    public: int
    control: int


@dataclass(slots=True)
class PortAllocator:
    """
    Thread-safe port allocator.

    Allocates sequential ports per purpose. Each node gets a unique triple.
    """

    _counter: int = field(default=0)
    """Current offset shared by every port range."""

    _lock: threading.Lock = field(default_factory=threading.Lock)
    """Thread lock for concurrent access."""

    def allocate(self) -> NodePorts:
        """
        Allocate a private, public and control port for one node.

        Returns:
            The allocated ports.
        """
        with self._lock:
            offset = self._counter
            self._counter += 1
        return NodePorts(
            private=BASE_PRIVATE_PORT + offset,
            public=BASE_PUBLIC_PORT + offset,
            control=BASE_CONTROL_PORT + offset,
        )

    def reset(self) -> None:
        """Reset counters to initial state."""
        with self._lock:
            self._counter = 0
