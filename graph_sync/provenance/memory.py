"""In-memory provenance store (tests and throwaway runs)."""
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models_ingestion import (
    IngestionSource,
    SourceIdentity,
    SourceItem,
    SyncRun,
    SyncRunStatus,
)
from ..utils.timestamp import utcnow
from .base import ProvenanceStore


class MemoryProvenanceStore(ProvenanceStore):
    """Dict-backed provenance store. Nothing survives the process."""

    kind = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._sources: Dict[str, IngestionSource] = {}  # keyed by source_key
        self._items: Dict[Tuple[str, str], SourceItem] = {}
        self._runs: Dict[str, SyncRun] = {}

    def resolve_source_id(self, identity: SourceIdentity) -> str:
        with self._lock:
            now = utcnow()
            existing = self._sources.get(identity.source_key)
            if existing:
                self._sources[identity.source_key] = existing.model_copy(
                    update={"config": dict(identity.config), "updated_at": now}
                )
                return existing.id
            source = IngestionSource(
                id=str(uuid.uuid4()),
                type=identity.type,
                name=identity.name,
                config=dict(identity.config),
                created_at=now,
                updated_at=now,
            )
            self._sources[identity.source_key] = source
            return source.id

    def find_source(self, identity: SourceIdentity) -> Optional[IngestionSource]:
        with self._lock:
            return self._sources.get(identity.source_key)

    def find_source_item(self, source_id: str, external_id: str) -> Optional[SourceItem]:
        with self._lock:
            return self._items.get((source_id, external_id))

    def upsert_source_item(self, item: SourceItem) -> SourceItem:
        with self._lock:
            self._items[(item.source_id, item.external_id)] = item
            return item

    def list_items_for_source(
        self,
        source_id: str,
        include_deleted: bool = False
    ) -> List[SourceItem]:
        with self._lock:
            items = [
                item for (sid, _), item in self._items.items()
                if sid == source_id and (include_deleted or item.deleted_at is None)
            ]
        return sorted(items, key=lambda item: item.external_id)

    def mark_deleted(self, source_id: str, external_id: str, at: datetime) -> bool:
        with self._lock:
            item = self._items.get((source_id, external_id))
            if item is None or item.deleted_at is not None:
                return False
            self._items[(source_id, external_id)] = item.model_copy(update={"deleted_at": at})
            return True

    def delete_item(self, source_id: str, external_id: str) -> bool:
        with self._lock:
            return self._items.pop((source_id, external_id), None) is not None

    def create_sync_run(self, source_id: str, started_at: datetime) -> SyncRun:
        run = SyncRun(id=str(uuid.uuid4()), source_id=source_id, started_at=started_at)
        with self._lock:
            self._runs[run.id] = run
        return run

    def complete_sync_run(
        self,
        run_id: str,
        completed_at: datetime,
        status: SyncRunStatus,
        stats: Dict[str, Any],
        error: Optional[str] = None
    ) -> SyncRun:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise KeyError(f"Unknown sync run: {run_id}")
            run = run.model_copy(update={
                "completed_at": completed_at,
                "status": SyncRunStatus(status),
                "stats": dict(stats),
                "error": error,
            })
            self._runs[run_id] = run
            return run

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        with self._lock:
            return self._runs.get(run_id)

    def list_sync_runs(self, source_id: str) -> List[SyncRun]:
        with self._lock:
            runs = [run for run in self._runs.values() if run.source_id == source_id]
        return sorted(runs, key=lambda run: run.started_at)
