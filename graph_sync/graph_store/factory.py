"""Factory for creating graph store instances."""
from typing import Optional

from .. import config
from .base import GraphStore
from .file_backed import FileBackedGraphStore
from .memory import InMemoryGraphStore


def get_graph_store(
    backend: Optional[str] = None,
    file_path: Optional[str] = None,
    persist_interval_ms: Optional[int] = None,
    enable_backup: Optional[bool] = None
) -> GraphStore:
    """
    Get a graph store based on arguments or environment configuration.

    Arguments left as None fall back to GRAPH_STORE_BACKEND, GRAPH_STORE_PATH,
    GRAPH_STORE_PERSIST_INTERVAL_MS and GRAPH_STORE_ENABLE_BACKUP.

    Returns:
        GraphStore instance
    """
    backend = (backend or config.GRAPH_STORE_BACKEND).lower()

    if backend == "memory":
        return InMemoryGraphStore()
    if backend == "file":
        return FileBackedGraphStore(
            file_path=file_path or config.GRAPH_STORE_PATH,
            persist_interval_ms=(
                config.GRAPH_STORE_PERSIST_INTERVAL_MS if persist_interval_ms is None else persist_interval_ms
            ),
            enable_backup=config.GRAPH_STORE_ENABLE_BACKUP if enable_backup is None else enable_backup,
        )

    raise ValueError(f"Unknown graph store backend: {backend!r} (expected 'file' or 'memory')")
