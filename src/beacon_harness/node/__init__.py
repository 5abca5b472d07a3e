"""Node agents: the contract the harness drives and its subprocess implementation."""

from .agent import NodeAgent
from .ports import NodePorts, PortAllocator
from .process import NodeSettings, ProcessNode, ProcessNodeFactory
from .tls import TlsMaterial, generate_self_signed

__all__ = [
    "NodeAgent",
    "NodePorts",
    "NodeSettings",
    "PortAllocator",
    "ProcessNode",
    "ProcessNodeFactory",
    "TlsMaterial",
    "generate_self_signed",
]
