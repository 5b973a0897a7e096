"""Graph store implementations."""
from .base import GraphStore
from .factory import get_graph_store
from .file_backed import CURRENT_SNAPSHOT_VERSION, FileBackedGraphStore
from .memory import InMemoryGraphStore

__all__ = [
    "GraphStore",
    "InMemoryGraphStore",
    "FileBackedGraphStore",
    "CURRENT_SNAPSHOT_VERSION",
    "get_graph_store",
]
