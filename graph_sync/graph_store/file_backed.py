"""
File-backed graph store.

Keeps the whole graph in an InMemoryGraphStore and persists it as one JSON
snapshot:

    {"version": 1, "updatedAt": "...", "nodes": [...], "edges": [...], "settings": {...}}

Writes go to `<path>.tmp`, are fsynced, and then atomically replace the
primary file. The previous primary is copied to `<path>.bak` first, so a
primary that is later found corrupted can be recovered from the backup.
"""
import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import StorageUnavailableError, UnsupportedVersionError, ValidationError
from ..models_graph import (
    DeleteNodeResult,
    Edge,
    EdgeCreate,
    EdgeUpdate,
    GraphSettings,
    Node,
    NodeCreate,
    NodeUpdate,
)
from ..utils.timestamp import utcnow_iso
from .base import GraphStore
from .memory import InMemoryGraphStore

logger = logging.getLogger("graph_sync")

CURRENT_SNAPSHOT_VERSION = 1

# Raised while decoding a snapshot that is not valid JSON or has the wrong shape
_MALFORMED_ERRORS = (ValueError, TypeError, ValidationError)


class FileBackedGraphStore(GraphStore):
    """
    Durable graph store backed by a single JSON file.

    The file is loaded lazily on the first operation. Mutations mark the store
    dirty and schedule a write: immediately when persist_interval_ms <= 0,
    otherwise after persist_interval_ms of quiet (trailing debounce on a
    background timer). flush() writes pending state right away.

    The file is owned by one process; access within it is serialized by a lock.
    """

    kind = "file"

    def __init__(
        self,
        file_path: Union[str, Path],
        persist_interval_ms: int = 500,
        enable_backup: bool = True
    ):
        """
        Args:
            file_path: Path of the primary snapshot file
            persist_interval_ms: Debounce window for writes (0 writes on every mutation)
            enable_backup: Copy the previous snapshot to `<file_path>.bak` before replacing it
        """
        self.file_path = Path(file_path)
        self.backup_path = Path(f"{self.file_path}.bak")
        self.tmp_path = Path(f"{self.file_path}.tmp")
        self.persist_interval_ms = persist_interval_ms
        self.enable_backup = enable_backup

        self._lock = threading.RLock()
        self._store: Optional[InMemoryGraphStore] = None
        self._load_error: Optional[Exception] = None
        self._primary_valid = False
        self._dirty = False
        self._timer: Optional[threading.Timer] = None

    # ---- loading ----

    def _ensure_loaded(self) -> InMemoryGraphStore:
        with self._lock:
            if self._load_error is not None:
                raise self._load_error
            if self._store is None:
                try:
                    self._store = self._load_from_disk()
                except (UnsupportedVersionError, StorageUnavailableError) as e:
                    self._load_error = e
                    raise
            return self._store

    def _read_bytes(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read graph file {path}: {e}") from e

    def _parse_snapshot(self, data: bytes, path: Path) -> InMemoryGraphStore:
        raw = json.loads(data)
        if not isinstance(raw, dict):
            raise ValueError("invalid file format (expected object)")
        version = raw.get("version")
        if type(version) is not int or version != CURRENT_SNAPSHOT_VERSION:
            raise UnsupportedVersionError(version, path=str(path))
        nodes = raw.get("nodes", [])
        edges = raw.get("edges", [])
        settings = raw.get("settings")
        if not isinstance(nodes, list) or not isinstance(edges, list):
            raise ValueError("invalid file format (nodes and edges must be lists)")
        if settings is not None and not isinstance(settings, dict):
            raise ValueError("invalid file format (settings must be an object)")
        return InMemoryGraphStore(nodes=nodes, edges=edges, settings=settings)

    def _load_from_disk(self) -> InMemoryGraphStore:
        data = self._read_bytes(self.file_path)
        if data is not None:
            try:
                store = self._parse_snapshot(data, self.file_path)
                self._primary_valid = True
                return store
            except _MALFORMED_ERRORS as e:
                logger.warning(f"Graph file {self.file_path} is malformed ({e}); trying backup")

            backup = self._read_bytes(self.backup_path)
            if backup is not None:
                try:
                    store = self._parse_snapshot(backup, self.backup_path)
                    logger.warning(f"Recovered graph from backup {self.backup_path}")
                    return store
                except _MALFORMED_ERRORS as e:
                    logger.warning(f"Graph backup {self.backup_path} is malformed ({e})")
            logger.warning(f"No readable snapshot for {self.file_path}; starting with an empty graph")
            return InMemoryGraphStore()

        backup = self._read_bytes(self.backup_path)
        if backup is not None:
            try:
                store = self._parse_snapshot(backup, self.backup_path)
                logger.info(f"Graph file {self.file_path} missing; loaded backup {self.backup_path}")
                return store
            except _MALFORMED_ERRORS as e:
                logger.warning(f"Graph backup {self.backup_path} is malformed ({e}); starting empty")
        return InMemoryGraphStore()

    # ---- persistence ----

    def _schedule_persist(self) -> None:
        """Called with the lock held after a successful mutation."""
        self._dirty = True
        if self.persist_interval_ms <= 0:
            self._persist_to_disk()
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.persist_interval_ms / 1000.0, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            if not self._dirty:
                return
            try:
                self._persist_to_disk()
            except StorageUnavailableError as e:
                # Store stays dirty; the next flush() retries and raises
                logger.error(f"Background persist of {self.file_path} failed: {e}")

    def _persist_to_disk(self) -> None:
        if self._store is None:
            return
        payload: Dict[str, Any] = {
            "version": CURRENT_SNAPSHOT_VERSION,
            "updatedAt": utcnow_iso(),
            **self._store.to_snapshot_data(),
        }
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())

            # A primary that failed to parse must not overwrite a good backup
            if self.enable_backup and self._primary_valid and self.file_path.exists():
                shutil.copyfile(self.file_path, self.backup_path)

            os.replace(self.tmp_path, self.file_path)
            self._fsync_directory()
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write graph file {self.file_path}: {e}") from e

        self._primary_valid = True
        self._dirty = False
        logger.debug(
            f"Persisted graph to {self.file_path} "
            f"({len(payload['nodes'])} nodes, {len(payload['edges'])} edges)"
        )

    def _fsync_directory(self) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(str(self.file_path.parent), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def flush(self) -> None:
        with self._lock:
            self._ensure_loaded()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._dirty:
                self._persist_to_disk()

    def close(self) -> None:
        self.flush()

    # ---- reads ----

    def list_nodes(self, limit: Optional[int] = None, offset: int = 0) -> List[Node]:
        return self._ensure_loaded().list_nodes(limit=limit, offset=offset)

    def get_node_by_id(self, node_id: str) -> Optional[Node]:
        return self._ensure_loaded().get_node_by_id(node_id)

    def get_node_by_slug(self, slug: str) -> Optional[Node]:
        return self._ensure_loaded().get_node_by_slug(slug)

    def list_edges(
        self,
        node_id: Optional[str] = None,
        relationship_type: Optional[str] = None
    ) -> List[Edge]:
        return self._ensure_loaded().list_edges(node_id=node_id, relationship_type=relationship_type)

    def get_settings(self) -> GraphSettings:
        return self._ensure_loaded().get_settings()

    # ---- writes ----

    def create_nodes(self, nodes: List[Union[NodeCreate, Dict[str, Any]]]) -> List[Node]:
        with self._lock:
            created = self._ensure_loaded().create_nodes(nodes)
            if created:
                self._schedule_persist()
            return created

    def update_node(self, node_id: str, patch: Union[NodeUpdate, Dict[str, Any]]) -> Optional[Node]:
        with self._lock:
            updated = self._ensure_loaded().update_node(node_id, patch)
            if updated is not None:
                self._schedule_persist()
            return updated

    def delete_node(self, node_id: str) -> DeleteNodeResult:
        with self._lock:
            result = self._ensure_loaded().delete_node(node_id)
            if result.deleted:
                self._schedule_persist()
            return result

    def create_edges(self, edges: List[Union[EdgeCreate, Dict[str, Any]]]) -> List[Edge]:
        with self._lock:
            created = self._ensure_loaded().create_edges(edges)
            if created:
                self._schedule_persist()
            return created

    def update_edge(self, edge_id: str, patch: Union[EdgeUpdate, Dict[str, Any]]) -> Optional[Edge]:
        with self._lock:
            updated = self._ensure_loaded().update_edge(edge_id, patch)
            if updated is not None:
                self._schedule_persist()
            return updated

    def delete_edge(self, edge_id: str) -> bool:
        with self._lock:
            deleted = self._ensure_loaded().delete_edge(edge_id)
            if deleted:
                self._schedule_persist()
            return deleted

    def update_settings(self, update: Dict[str, Any]) -> GraphSettings:
        with self._lock:
            settings = self._ensure_loaded().update_settings(update)
            self._schedule_persist()
            return settings

    def reset_settings(self) -> GraphSettings:
        with self._lock:
            settings = self._ensure_loaded().reset_settings()
            self._schedule_persist()
            return settings
