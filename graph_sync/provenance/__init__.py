"""Provenance store implementations."""
from .base import ProvenanceStore
from .factory import get_provenance_store
from .memory import MemoryProvenanceStore
from .sqlite import SQLiteProvenanceStore

__all__ = [
    "ProvenanceStore",
    "MemoryProvenanceStore",
    "SQLiteProvenanceStore",
    "get_provenance_store",
]
