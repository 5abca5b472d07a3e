"""Node roster lifecycle and failure injection."""

from .faults import FailureInjector
from .lifecycle import ClusterLifecycleManager, CreatedNodes, NodeFactory
from .roster import filter_nodes, find_node

__all__ = [
    "ClusterLifecycleManager",
    "CreatedNodes",
    "FailureInjector",
    "NodeFactory",
    "filter_nodes",
    "find_node",
]
