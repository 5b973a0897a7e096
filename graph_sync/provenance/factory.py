"""Factory for creating provenance store instances."""
from typing import Optional

from .. import config
from .base import ProvenanceStore
from .memory import MemoryProvenanceStore
from .sqlite import SQLiteProvenanceStore


def get_provenance_store(
    backend: Optional[str] = None,
    db_path: Optional[str] = None
) -> ProvenanceStore:
    """
    Get a provenance store based on arguments or environment configuration.

    Args:
        backend: "sqlite" or "memory" (defaults to PROVENANCE_BACKEND)
        db_path: SQLite file path (defaults to PROVENANCE_SQLITE_PATH)

    Returns:
        ProvenanceStore instance
    """
    backend = (backend or config.PROVENANCE_BACKEND).lower()

    if backend == "memory":
        return MemoryProvenanceStore()
    if backend == "sqlite":
        return SQLiteProvenanceStore(db_path=db_path or config.PROVENANCE_SQLITE_PATH)

    raise ValueError(f"Unknown provenance backend: {backend!r} (expected 'sqlite' or 'memory')")
