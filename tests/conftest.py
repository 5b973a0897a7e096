"""
Pytest configuration and fixtures for graph-sync tests.

This module provides:
- In-memory and SQLite-backed store fixtures
- An engine wired to in-memory stores
- Sample record builders
- Environment overrides so no test touches a real .env or data directory
"""
import os
from typing import Any, Dict, List

import pytest

os.environ.setdefault("GRAPH_STORE_BACKEND", "memory")
os.environ.setdefault("PROVENANCE_BACKEND", "memory")
os.environ.setdefault("GRAPH_STORE_PERSIST_INTERVAL_MS", "0")

from graph_sync.graph_store import FileBackedGraphStore, InMemoryGraphStore
from graph_sync.models_ingestion import IngestOptions, SourceIdentity
from graph_sync.provenance import MemoryProvenanceStore, SQLiteProvenanceStore
from graph_sync.services_ingestion_engine import IngestionEngine
from tests.helpers import make_record


@pytest.fixture
def graph_store():
    return InMemoryGraphStore()


@pytest.fixture
def provenance():
    return MemoryProvenanceStore()


@pytest.fixture
def sqlite_provenance(tmp_path):
    """SQLite provenance store in a temporary directory."""
    store = SQLiteProvenanceStore(db_path=str(tmp_path / "provenance.db"))
    yield store
    store.close()


@pytest.fixture
def file_store_path(tmp_path):
    return tmp_path / "graph" / "graph.json"


@pytest.fixture
def file_store(file_store_path):
    """File-backed store that writes on every mutation."""
    store = FileBackedGraphStore(file_store_path, persist_interval_ms=0)
    yield store
    store.close()


@pytest.fixture
def engine(graph_store, provenance):
    return IngestionEngine(graph_store, provenance)


@pytest.fixture
def source():
    return SourceIdentity(type="markdown", name="docs", config={"path": "./docs"})


@pytest.fixture
def make_options(source):
    """Build IngestOptions for the default source."""
    def _make(**overrides) -> IngestOptions:
        return IngestOptions(source=source, **overrides)
    return _make


@pytest.fixture
def sample_records() -> List[Dict[str, Any]]:
    return [
        make_record("a.md", metadata={"tags": "one"}),
        make_record("b.md", references=["a.md"]),
        make_record("c.md", parentExternalId="a.md"),
    ]
