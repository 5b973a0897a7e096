"""Abstract base class for provenance stores."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models_ingestion import (
    IngestionSource,
    SourceIdentity,
    SourceItem,
    SyncRun,
    SyncRunStatus,
)


class ProvenanceStore(ABC):
    """
    Abstract interface for provenance storage.

    Tracks which graph node each (source, external id) pair maps to, the
    content hash last applied, and when it was last seen or deleted. Also
    keeps the configured sources and the history of sync runs.
    """

    kind: str = "abstract"

    @abstractmethod
    def resolve_source_id(self, identity: SourceIdentity) -> str:
        """
        Get the stable id for a source, creating the source row on first use.

        Later calls refresh the stored config.
        """
        pass

    @abstractmethod
    def find_source(self, identity: SourceIdentity) -> Optional[IngestionSource]:
        """Look up a source without creating it."""
        pass

    @abstractmethod
    def find_source_item(self, source_id: str, external_id: str) -> Optional[SourceItem]:
        pass

    @abstractmethod
    def upsert_source_item(self, item: SourceItem) -> SourceItem:
        """
        Insert or overwrite the item keyed by (source_id, external_id).

        Raises:
            ConflictError: If a concurrent writer holds a conflicting row
        """
        pass

    @abstractmethod
    def list_items_for_source(
        self,
        source_id: str,
        include_deleted: bool = False
    ) -> List[SourceItem]:
        """
        List items for a source, ordered by external id.

        Args:
            source_id: Source identifier
            include_deleted: Also return soft-deleted items
        """
        pass

    @abstractmethod
    def mark_deleted(self, source_id: str, external_id: str, at: datetime) -> bool:
        """
        Soft-delete an item. Idempotent.

        Returns:
            True if the item was live and is now marked deleted
        """
        pass

    @abstractmethod
    def delete_item(self, source_id: str, external_id: str) -> bool:
        """Hard-remove an item. Returns True if a row was removed."""
        pass

    @abstractmethod
    def create_sync_run(self, source_id: str, started_at: datetime) -> SyncRun:
        pass

    @abstractmethod
    def complete_sync_run(
        self,
        run_id: str,
        completed_at: datetime,
        status: SyncRunStatus,
        stats: Dict[str, Any],
        error: Optional[str] = None
    ) -> SyncRun:
        pass

    @abstractmethod
    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        pass

    @abstractmethod
    def list_sync_runs(self, source_id: str) -> List[SyncRun]:
        """List sync runs for a source, oldest first."""
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass
