"""
Ingestion engine: provenance-tracked diff-and-apply of source records onto
the graph.

One call to ingest() is one sync run:

1. Reconcile each record against provenance (create, resurrect, skip or update
   its node).
2. Resolve references and parents to node ids and reconcile the edges the
   engine owns for this source.
3. Apply the delete policy to provenance items that were not in the input.

Per-record failures are collected on the result and the run continues.
Storage failures abort the run.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .connectors.base import BaseConnector
from .errors import (
    ConflictError,
    ConnectorError,
    GraphSyncError,
    StorageUnavailableError,
    UnsupportedVersionError,
    ValidationError,
)
from .graph_store.base import GraphStore
from .models_graph import EdgeCreate, NodeCreate, NodeUpdate
from .models_ingestion import (
    ConnectorListOptions,
    DeleteMode,
    IngestionRecord,
    IngestItemError,
    IngestOptions,
    IngestResult,
    IngestStats,
    SourceItem,
    SyncRunStatus,
)
from .provenance.base import ProvenanceStore
from .utils.content_hash import hash_ingestion_record
from .utils.slug import build_source_aware_slug
from .utils.timestamp import to_iso, utcnow

logger = logging.getLogger("graph_sync")

REFERENCES = "references"
PART_OF = "part_of"
ENGINE_RELATIONSHIPS = (REFERENCES, PART_OF)

# Errors that abort the whole run instead of one record
FATAL_ERRORS = (StorageUnavailableError, UnsupportedVersionError)

MAX_RUN_ERRORS_STORED = 50

RecordInput = Union[IngestionRecord, Mapping[str, Any]]


@dataclass
class _RunState:
    """Mutable state of one ingest() call."""
    source_id: Optional[str]
    source_key: str
    dry_run: bool
    started_at: datetime
    stats: IngestStats
    errors: List[IngestItemError] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)
    records: List[IngestionRecord] = field(default_factory=list)
    node_ids: Dict[str, str] = field(default_factory=dict)
    # Dry runs only: planned provenance rows, node ids and slugs
    overlay: Dict[str, SourceItem] = field(default_factory=dict)
    planned_node_ids: Set[str] = field(default_factory=set)
    planned_slugs: Set[str] = field(default_factory=set)

    def record_error(self, external_id: str, error: Exception) -> None:
        self.stats.errors += 1
        self.errors.append(IngestItemError(external_id=external_id, error=str(error) or type(error).__name__))


def _record_label(raw: RecordInput, index: int) -> str:
    """Best available identifier for error reporting."""
    if isinstance(raw, IngestionRecord):
        return raw.external_id
    if isinstance(raw, Mapping):
        value = raw.get("externalId", raw.get("external_id"))
        if isinstance(value, str) and value:
            return value
    return f"(record {index})"


class IngestionEngine:
    """
    Applies source records to a graph store, tracking provenance.

    Both stores are passed in explicitly; the caller owns their lifecycle.
    Overlapping ingest() calls for the same source are not supported.
    """

    def __init__(self, store: GraphStore, provenance: ProvenanceStore):
        if store is None or provenance is None:
            raise ValueError("IngestionEngine requires a graph store and a provenance store")
        self.store = store
        self.provenance = provenance

    # ---- entry points ----

    def ingest_from_connector(
        self,
        connector: BaseConnector,
        options: Union[IngestOptions, Mapping[str, Any]],
        signal: Optional[threading.Event] = None
    ) -> IngestResult:
        """
        Fetch records from a connector, then ingest them.

        Raises:
            ConnectorError: If the connector fails; nothing has been written
        """
        options = self._coerce_options(options)
        if connector.source_type != options.source.type:
            logger.warning(
                f"Connector type {connector.source_type!r} does not match source type {options.source.type!r}"
            )
        list_options = ConnectorListOptions(limit=options.limit, since=options.since, signal=signal)
        try:
            records = connector.list_records(list_options)
        except ConnectorError:
            raise
        except Exception as e:
            raise ConnectorError(f"{connector.source_type} connector failed: {e}") from e
        return self.ingest(records, options)

    def ingest(
        self,
        records: Sequence[RecordInput],
        options: Union[IngestOptions, Mapping[str, Any]]
    ) -> IngestResult:
        """
        Run one sync of `records` for `options.source`.

        Args:
            records: IngestionRecords (or dicts validated into them) in apply order
            options: Source identity, delete mode and dry-run flag

        Returns:
            IngestResult with per-record errors; status is "partial" when any
            record failed

        Raises:
            ValidationError: If options are invalid
            StorageUnavailableError: If a store cannot be reached (run marked failed)
            UnsupportedVersionError: If the graph file has an unknown version
        """
        options = self._coerce_options(options)
        identity = options.source
        dry_run = options.dry_run
        started_at = utcnow()

        logger.info(
            f"Starting {'dry run' if dry_run else 'sync'} for {identity.source_key} "
            f"({len(records)} records, delete_mode={options.delete_mode.value})"
        )

        run_id = None
        if dry_run:
            existing_source = self.provenance.find_source(identity)
            source_id = existing_source.id if existing_source else None
        else:
            source_id = self.provenance.resolve_source_id(identity)
            run_id = self.provenance.create_sync_run(source_id, started_at).id

        state = _RunState(
            source_id=source_id,
            source_key=identity.source_key,
            dry_run=dry_run,
            started_at=started_at,
            stats=IngestStats(total=len(records)),
        )

        try:
            self._reconcile_records(state, records)
            self._reconcile_edges(state)
            self._reconcile_deletions(state, options.delete_mode)
        except FATAL_ERRORS as e:
            logger.error(f"Sync for {identity.source_key} aborted: {e}")
            if run_id is not None:
                self._complete_run(run_id, SyncRunStatus.FAILED, state, fatal=e)
            raise

        status = SyncRunStatus.PARTIAL if state.errors else SyncRunStatus.COMPLETED
        if run_id is not None:
            self._complete_run(run_id, status, state)

        stats = state.stats
        logger.info(
            f"Finished {'dry run' if dry_run else 'sync'} for {identity.source_key}: "
            f"status={status.value} total={stats.total} created={stats.created} "
            f"updated={stats.updated} skipped={stats.skipped} deleted={stats.deleted} errors={stats.errors}"
        )
        return IngestResult(
            source_id=source_id,
            sync_run_id=run_id,
            status=status,
            stats=stats,
            errors=state.errors,
        )

    # ---- boundary validation ----

    def _coerce_options(self, options: Union[IngestOptions, Mapping[str, Any]]) -> IngestOptions:
        if isinstance(options, IngestOptions):
            return options
        try:
            return IngestOptions.model_validate(options)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid ingest options: {e}") from e

    def _coerce_record(self, raw: RecordInput) -> IngestionRecord:
        if isinstance(raw, IngestionRecord):
            return raw
        try:
            return IngestionRecord.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid record: {e.errors()[0]['msg'] if e.errors() else e}") from e

    # ---- phase 1: records ----

    def _reconcile_records(self, state: _RunState, records: Sequence[RecordInput]) -> None:
        for index, raw in enumerate(records):
            label = _record_label(raw, index)
            if not label.startswith("(record "):
                state.seen.add(label)
            try:
                record = self._coerce_record(raw)
                self._apply_record(state, record)
                state.records.append(record)
            except FATAL_ERRORS:
                raise
            except GraphSyncError as e:
                logger.warning(f"Record {label} from {state.source_key} failed: {e}")
                state.record_error(label, e)
            except Exception as e:
                logger.warning(f"Record {label} from {state.source_key} failed unexpectedly: {e}", exc_info=True)
                state.record_error(label, e)

    def _apply_record(self, state: _RunState, record: IngestionRecord) -> None:
        content_hash = hash_ingestion_record(record)
        existing = self._find_item(state, record.external_id)

        if existing is None:
            node_id = self._create_node(state, record)
            outcome = "created"
        elif existing.deleted_at is not None:
            # Resurrect: reuse the node if it survived the soft delete
            if self._node_exists(state, existing.node_id):
                self._update_node(state, existing.node_id, record)
                node_id, outcome = existing.node_id, "updated"
            else:
                node_id, outcome = self._create_node(state, record), "created"
        elif not self._node_exists(state, existing.node_id):
            # Provenance points at a node that is gone from the graph, e.g.
            # provenance committed before an unflushed graph write was lost
            node_id, outcome = self._create_node(state, record), "created"
        elif existing.content_hash == content_hash:
            node_id, outcome = existing.node_id, "skipped"
        else:
            self._update_node(state, existing.node_id, record)
            node_id, outcome = existing.node_id, "updated"

        item = SourceItem(
            source_id=state.source_id or "",
            external_id=record.external_id,
            node_id=node_id,
            content_hash=content_hash,
            last_seen_at=state.started_at,
            deleted_at=None,
        )
        if state.dry_run:
            state.overlay[record.external_id] = item
        else:
            try:
                self.provenance.upsert_source_item(item)
            except FATAL_ERRORS:
                raise
            except GraphSyncError:
                if outcome == "created":
                    self.store.delete_node(node_id)
                raise

        state.node_ids[record.external_id] = node_id
        setattr(state.stats, outcome, getattr(state.stats, outcome) + 1)

    def _find_item(self, state: _RunState, external_id: str) -> Optional[SourceItem]:
        if state.dry_run and external_id in state.overlay:
            return state.overlay[external_id]
        if state.source_id is None:
            return None
        return self.provenance.find_source_item(state.source_id, external_id)

    def _node_exists(self, state: _RunState, node_id: str) -> bool:
        if state.dry_run and node_id in state.planned_node_ids:
            return True
        return self.store.get_node_by_id(node_id) is not None

    def _node_metadata(self, state: _RunState, record: IngestionRecord) -> Dict[str, Any]:
        metadata = dict(record.metadata)
        metadata["source"] = state.source_key
        metadata["externalId"] = record.external_id
        if record.url:
            metadata["url"] = record.url
        if record.updated_at:
            metadata["sourceUpdatedAt"] = to_iso(record.updated_at)
        return metadata

    def _create_node(self, state: _RunState, record: IngestionRecord) -> str:
        slug = build_source_aware_slug(record.title, state.source_key, record.external_id)
        if state.dry_run:
            if slug in state.planned_slugs or self.store.get_node_by_slug(slug) is not None:
                raise ConflictError(f"Node slug already exists: {slug}")
            state.planned_slugs.add(slug)
            node_id = f"dry-run:{slug}"
            state.planned_node_ids.add(node_id)
            return node_id

        created = self.store.create_nodes([NodeCreate(
            slug=slug,
            label=record.title,
            content=record.content,
            metadata=self._node_metadata(state, record),
            domain=record.domain,
            node_type=record.node_type,
        )])
        return created[0].id

    def _update_node(self, state: _RunState, node_id: str, record: IngestionRecord) -> None:
        if state.dry_run:
            return
        self.store.update_node(node_id, NodeUpdate(
            label=record.title,
            content=record.content,
            metadata=self._node_metadata(state, record),
            domain=record.domain,
            node_type=record.node_type,
        ))

    # ---- phase 2: edges ----

    def _resolve_node_id(self, state: _RunState, external_id: str) -> Optional[str]:
        node_id = state.node_ids.get(external_id)
        if node_id is not None:
            return node_id
        item = self._find_item(state, external_id)
        if item is None or item.deleted_at is not None:
            return None
        return item.node_id if self._node_exists(state, item.node_id) else None

    def _reconcile_edges(self, state: _RunState) -> None:
        for record in state.records:
            from_id = state.node_ids.get(record.external_id)
            if from_id is None:
                continue
            try:
                desired: List[Tuple[str, str]] = []
                for ref in record.references:
                    to_id = self._resolve_node_id(state, ref)
                    if to_id and to_id != from_id:
                        desired.append((to_id, REFERENCES))
                if record.parent_external_id:
                    parent_id = self._resolve_node_id(state, record.parent_external_id)
                    if parent_id and parent_id != from_id:
                        desired.append((parent_id, PART_OF))
                if not state.dry_run:
                    self._apply_edges(state, from_id, list(dict.fromkeys(desired)))
            except FATAL_ERRORS:
                raise
            except GraphSyncError as e:
                logger.warning(f"Edges for {record.external_id} from {state.source_key} failed: {e}")
                state.record_error(record.external_id, e)

    def _apply_edges(self, state: _RunState, from_id: str, desired: List[Tuple[str, str]]) -> None:
        outgoing = [e for e in self.store.list_edges(node_id=from_id) if e.from_node_id == from_id]
        existing_keys = {(e.to_node_id, e.relationship_type) for e in outgoing}
        owned = [
            e for e in outgoing
            if e.relationship_type in ENGINE_RELATIONSHIPS and e.metadata.get("source") == state.source_key
        ]

        to_create = [
            EdgeCreate(
                from_node_id=from_id,
                to_node_id=to_id,
                relationship_type=rel,
                metadata={"source": state.source_key},
            )
            for to_id, rel in desired if (to_id, rel) not in existing_keys
        ]
        if to_create:
            self.store.create_edges(to_create)

        wanted = set(desired)
        kept: Set[Tuple[str, str]] = set()
        for edge in owned:
            key = (edge.to_node_id, edge.relationship_type)
            if key in wanted and key not in kept:
                kept.add(key)
                continue
            self.store.delete_edge(edge.id)

    # ---- phase 3: deletions ----

    def _reconcile_deletions(self, state: _RunState, delete_mode: DeleteMode) -> None:
        if delete_mode == DeleteMode.NONE or state.source_id is None:
            return

        items = self.provenance.list_items_for_source(
            state.source_id,
            include_deleted=(delete_mode == DeleteMode.HARD),
        )
        missing = [item for item in items if item.external_id not in state.seen]
        for item in missing:
            try:
                if delete_mode == DeleteMode.SOFT:
                    if item.deleted_at is not None:
                        continue
                    if state.dry_run or self.provenance.mark_deleted(
                        state.source_id, item.external_id, utcnow()
                    ):
                        state.stats.deleted += 1
                else:
                    if not state.dry_run:
                        self.store.delete_node(item.node_id)
                        self.provenance.delete_item(state.source_id, item.external_id)
                    state.stats.deleted += 1
            except FATAL_ERRORS:
                raise
            except GraphSyncError as e:
                logger.warning(f"Deleting {item.external_id} from {state.source_key} failed: {e}")
                state.record_error(item.external_id, e)

    # ---- sync runs ----

    def _complete_run(
        self,
        run_id: str,
        status: SyncRunStatus,
        state: _RunState,
        fatal: Optional[Exception] = None
    ) -> None:
        errors = [error.to_json_dict() for error in state.errors[:MAX_RUN_ERRORS_STORED]]
        if fatal is not None:
            errors.insert(0, {"externalId": None, "error": str(fatal)})
        try:
            self.provenance.complete_sync_run(
                run_id,
                completed_at=utcnow(),
                status=status,
                stats=state.stats.to_json_dict(),
                error=json.dumps(errors[:MAX_RUN_ERRORS_STORED]) if errors else None,
            )
        except GraphSyncError as e:
            if fatal is None:
                raise
            # Already aborting; the original error is the one to surface
            logger.error(f"Could not mark sync run {run_id} as failed: {e}")
