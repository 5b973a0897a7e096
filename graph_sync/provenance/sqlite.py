"""SQLite implementation of the provenance store."""
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ConflictError, StorageUnavailableError
from ..models_ingestion import (
    IngestionSource,
    SourceIdentity,
    SourceItem,
    SyncRun,
    SyncRunStatus,
)
from ..utils.timestamp import parse_iso, to_iso, utcnow
from .base import ProvenanceStore

logger = logging.getLogger("graph_sync")


class SQLiteProvenanceStore(ProvenanceStore):
    """SQLite-backed provenance store. One database file per graph."""

    kind = "sqlite"

    def __init__(self, db_path: str = "provenance.db"):
        """
        Initialize SQLite provenance store.

        Args:
            db_path: Path to SQLite database file (":memory:" is not supported,
                each operation opens its own connection)
        """
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create provenance directory for {db_path}: {e}") from e
        self._init_db()

    def _get_connection(self):
        """Get database connection."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open provenance database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self):
        """Yield a connection, commit on success and map sqlite errors."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError(f"Provenance write conflict: {e}") from e
        except sqlite3.OperationalError as e:
            conn.rollback()
            if "locked" in str(e).lower() or "busy" in str(e).lower():
                raise ConflictError(f"Provenance database is locked: {e}") from e
            raise StorageUnavailableError(f"Provenance database error: {e}") from e
        except sqlite3.DatabaseError as e:
            conn.rollback()
            raise StorageUnavailableError(f"Provenance database error: {e}") from e
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ingestion_sources (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    config TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (type, name)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS source_items (
                    source_id TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    node_id TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    last_seen_at TEXT NOT NULL,
                    deleted_at TEXT,
                    PRIMARY KEY (source_id, external_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_runs (
                    id TEXT PRIMARY KEY,
                    source_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    stats TEXT NOT NULL DEFAULT '{}',
                    error TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_runs_source
                ON sync_runs(source_id, started_at)
            """)

    def resolve_source_id(self, identity: SourceIdentity) -> str:
        now = to_iso(utcnow())
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id FROM ingestion_sources WHERE type = ? AND name = ?",
                (identity.type, identity.name)
            ).fetchone()
            if row:
                conn.execute(
                    "UPDATE ingestion_sources SET config = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(identity.config, default=str), now, row["id"])
                )
                return row["id"]

            source_id = str(uuid.uuid4())
            conn.execute("""
                INSERT INTO ingestion_sources (id, type, name, config, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (source_id, identity.type, identity.name,
                  json.dumps(identity.config, default=str), now, now))
            logger.info(f"Registered ingestion source {identity.source_key} as {source_id}")
            return source_id

    def find_source(self, identity: SourceIdentity) -> Optional[IngestionSource]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM ingestion_sources WHERE type = ? AND name = ?",
                (identity.type, identity.name)
            ).fetchone()
        if not row:
            return None
        return IngestionSource(
            id=row["id"],
            type=row["type"],
            name=row["name"],
            config=json.loads(row["config"]),
            created_at=parse_iso(row["created_at"]),
            updated_at=parse_iso(row["updated_at"]),
        )

    def find_source_item(self, source_id: str, external_id: str) -> Optional[SourceItem]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM source_items WHERE source_id = ? AND external_id = ?",
                (source_id, external_id)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def upsert_source_item(self, item: SourceItem) -> SourceItem:
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO source_items (
                    source_id, external_id, node_id, content_hash, last_seen_at, deleted_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (source_id, external_id) DO UPDATE SET
                    node_id = excluded.node_id,
                    content_hash = excluded.content_hash,
                    last_seen_at = excluded.last_seen_at,
                    deleted_at = excluded.deleted_at
            """, (
                item.source_id,
                item.external_id,
                item.node_id,
                item.content_hash,
                to_iso(item.last_seen_at),
                to_iso(item.deleted_at) if item.deleted_at else None,
            ))
        return item

    def list_items_for_source(
        self,
        source_id: str,
        include_deleted: bool = False
    ) -> List[SourceItem]:
        query = "SELECT * FROM source_items WHERE source_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY external_id ASC"
        with self._transaction() as conn:
            rows = conn.execute(query, (source_id,)).fetchall()
        return [self._row_to_item(row) for row in rows]

    def mark_deleted(self, source_id: str, external_id: str, at: datetime) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE source_items SET deleted_at = ?
                WHERE source_id = ? AND external_id = ? AND deleted_at IS NULL
            """, (to_iso(at), source_id, external_id))
            return cursor.rowcount > 0

    def delete_item(self, source_id: str, external_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM source_items WHERE source_id = ? AND external_id = ?",
                (source_id, external_id)
            )
            return cursor.rowcount > 0

    def create_sync_run(self, source_id: str, started_at: datetime) -> SyncRun:
        run = SyncRun(id=str(uuid.uuid4()), source_id=source_id, started_at=started_at)
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO sync_runs (id, source_id, started_at, status, stats)
                VALUES (?, ?, ?, ?, '{}')
            """, (run.id, source_id, to_iso(started_at), run.status.value))
        return run

    def complete_sync_run(
        self,
        run_id: str,
        completed_at: datetime,
        status: SyncRunStatus,
        stats: Dict[str, Any],
        error: Optional[str] = None
    ) -> SyncRun:
        status = SyncRunStatus(status)
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE sync_runs SET completed_at = ?, status = ?, stats = ?, error = ?
                WHERE id = ?
            """, (to_iso(completed_at), status.value, json.dumps(stats), error, run_id))
            if cursor.rowcount == 0:
                raise KeyError(f"Unknown sync run: {run_id}")
        return self.get_sync_run(run_id)

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def list_sync_runs(self, source_id: str) -> List[SyncRun]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_runs WHERE source_id = ? ORDER BY started_at ASC",
                (source_id,)
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def _row_to_item(self, row: sqlite3.Row) -> SourceItem:
        """Convert database row to SourceItem."""
        return SourceItem(
            source_id=row["source_id"],
            external_id=row["external_id"],
            node_id=row["node_id"],
            content_hash=row["content_hash"],
            last_seen_at=parse_iso(row["last_seen_at"]),
            deleted_at=parse_iso(row["deleted_at"]),
        )

    def _row_to_run(self, row: sqlite3.Row) -> SyncRun:
        """Convert database row to SyncRun."""
        return SyncRun(
            id=row["id"],
            source_id=row["source_id"],
            started_at=parse_iso(row["started_at"]),
            completed_at=parse_iso(row["completed_at"]),
            status=row["status"],
            stats=json.loads(row["stats"] or "{}"),
            error=row["error"],
        )
