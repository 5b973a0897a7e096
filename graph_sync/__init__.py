"""
graph-sync: provenance-tracked ingestion of external sources into a node/edge graph.
"""
from .services_ingestion_engine import IngestionEngine
from .models_ingestion import (
    DeleteMode,
    IngestionRecord,
    IngestOptions,
    IngestResult,
    SourceIdentity,
)

__version__ = "0.1.0"

__all__ = [
    "IngestionEngine",
    "DeleteMode",
    "IngestionRecord",
    "IngestOptions",
    "IngestResult",
    "SourceIdentity",
]
