"""Tests for the ingestion engine."""
import pytest

pytestmark = pytest.mark.unit
import json
from unittest.mock import patch

from graph_sync.errors import ConnectorError, StorageUnavailableError, ValidationError
from graph_sync.graph_store import FileBackedGraphStore, InMemoryGraphStore
from graph_sync.models_ingestion import (
    DeleteMode,
    IngestionRecord,
    SourceIdentity,
    SyncRunStatus,
)
from graph_sync.provenance import MemoryProvenanceStore
from graph_sync.services_ingestion_engine import IngestionEngine
from graph_sync.utils.slug import build_source_aware_slug
from tests.helpers import make_record


def _stats(result):
    return result.stats.model_dump()


def _edges(store, rel=None):
    return {(e.from_node_id, e.to_node_id, e.relationship_type) for e in store.list_edges(relationship_type=rel)}


def _node_for(store, provenance, source_id, external_id):
    item = provenance.find_source_item(source_id, external_id)
    return store.get_node_by_id(item.node_id)


class TestCreateAndIdempotence:
    def test_first_run_creates_everything(self, engine, graph_store, make_options, sample_records):
        result = engine.ingest(sample_records, make_options())
        assert result.status == SyncRunStatus.COMPLETED
        assert _stats(result) == {
            "total": 3, "created": 3, "updated": 0, "skipped": 0, "deleted": 0, "errors": 0,
        }
        assert len(graph_store.list_nodes()) == 3
        assert result.source_id
        assert result.sync_run_id

    def test_second_identical_run_is_a_no_op(self, engine, graph_store, make_options, sample_records):
        engine.ingest(sample_records, make_options())
        before = [n.model_dump() for n in graph_store.list_nodes()]

        result = engine.ingest(sample_records, make_options())
        assert _stats(result) == {
            "total": 3, "created": 0, "updated": 0, "skipped": 3, "deleted": 0, "errors": 0,
        }
        assert [n.model_dump() for n in graph_store.list_nodes()] == before
        assert len(graph_store.list_edges()) == 2

    def test_node_fields_come_from_the_record(self, engine, graph_store, provenance, make_options, source):
        record = make_record(
            "a.md", url="https://example.com/a", metadata={"tags": "x"},
            domain="docs", nodeType="document", updatedAt="2024-05-01T10:00:00Z",
        )
        result = engine.ingest([record], make_options())
        node = _node_for(graph_store, provenance, result.source_id, "a.md")
        assert node.label == "Title a.md"
        assert node.content == "Content of a.md"
        assert node.domain == "docs"
        assert node.node_type == "document"
        assert node.slug == build_source_aware_slug("Title a.md", source.source_key, "a.md")
        assert node.metadata["tags"] == "x"
        assert node.metadata["url"] == "https://example.com/a"
        assert node.metadata["source"] == "markdown:docs"
        assert node.metadata["sourceUpdatedAt"] == "2024-05-01T10:00:00Z"

    def test_accepts_records_and_option_dicts(self, engine):
        record = IngestionRecord(external_id="x", title="X", content="")
        result = engine.ingest([record], {"source": {"type": "rss", "name": "feed"}, "deleteMode": "soft"})
        assert result.stats.created == 1

    def test_invalid_delete_mode_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.ingest([], {"source": {"type": "rss", "name": "feed"}, "deleteMode": "purge"})

    def test_empty_input(self, engine, make_options):
        result = engine.ingest([], make_options())
        assert result.status == SyncRunStatus.COMPLETED
        assert result.stats.total == 0


class TestChangeDetection:
    def test_changed_content_updates_in_place(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        node_before = _node_for(graph_store, provenance, first.source_id, "a.md")

        result = engine.ingest(
            [make_record("a.md", content="changed"), make_record("b.md")], make_options()
        )
        assert _stats(result)["updated"] == 1
        assert _stats(result)["skipped"] == 1
        node_after = _node_for(graph_store, provenance, first.source_id, "a.md")
        assert node_after.id == node_before.id
        assert node_after.slug == node_before.slug
        assert node_after.content == "changed"

    def test_title_change_keeps_identity(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md")], make_options())
        engine.ingest([make_record("a.md", title="Renamed")], make_options())
        nodes = graph_store.list_nodes()
        assert len(nodes) == 1
        assert nodes[0].label == "Renamed"
        assert provenance.find_source_item(first.source_id, "a.md").node_id == nodes[0].id

    def test_updated_at_alone_is_not_a_change(self, engine, make_options):
        engine.ingest([make_record("a.md", updatedAt="2024-01-01T00:00:00Z")], make_options())
        result = engine.ingest([make_record("a.md", updatedAt="2025-01-01T00:00:00Z")], make_options())
        assert result.stats.skipped == 1

    def test_skip_refreshes_last_seen(self, engine, provenance, make_options):
        first = engine.ingest([make_record("a.md")], make_options())
        seen_1 = provenance.find_source_item(first.source_id, "a.md").last_seen_at
        engine.ingest([make_record("a.md")], make_options())
        seen_2 = provenance.find_source_item(first.source_id, "a.md").last_seen_at
        assert seen_2 >= seen_1

    def test_node_deleted_out_of_band_is_recreated(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md")], make_options())
        graph_store.delete_node(provenance.find_source_item(first.source_id, "a.md").node_id)
        result = engine.ingest([make_record("a.md", content="new")], make_options())
        assert result.stats.created == 1
        assert _node_for(graph_store, provenance, first.source_id, "a.md").content == "new"

    def test_unchanged_record_with_missing_node_is_recreated(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md")], make_options())
        graph_store.delete_node(provenance.find_source_item(first.source_id, "a.md").node_id)
        result = engine.ingest([make_record("a.md")], make_options())
        assert result.stats.created == 1
        assert result.stats.skipped == 0
        assert _node_for(graph_store, provenance, first.source_id, "a.md") is not None


class TestDeletion:
    def test_none_leaves_missing_items(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        result = engine.ingest([make_record("a.md")], make_options(delete_mode=DeleteMode.NONE))
        assert result.stats.deleted == 0
        assert len(graph_store.list_nodes()) == 2

    def test_soft_delete_marks_provenance_and_keeps_node(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        result = engine.ingest([make_record("a.md")], make_options(delete_mode="soft"))
        assert result.stats.deleted == 1
        assert len(graph_store.list_nodes()) == 2
        item = provenance.find_source_item(first.source_id, "b.md")
        assert item.deleted_at is not None

        again = engine.ingest([make_record("a.md")], make_options(delete_mode="soft"))
        assert again.stats.deleted == 0

    def test_hard_delete_removes_node_and_row(self, engine, graph_store, provenance, make_options):
        first = engine.ingest(
            [make_record("a.md"), make_record("b.md", references=["a.md"])], make_options()
        )
        result = engine.ingest([make_record("a.md")], make_options(delete_mode="hard"))
        assert result.stats.deleted == 1
        assert [n.label for n in graph_store.list_nodes()] == ["Title a.md"]
        assert graph_store.list_edges() == []
        assert provenance.find_source_item(first.source_id, "b.md") is None

    def test_hard_delete_purges_previously_soft_deleted(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        engine.ingest([make_record("a.md")], make_options(delete_mode="soft"))
        result = engine.ingest([make_record("a.md")], make_options(delete_mode="hard"))
        assert result.stats.deleted == 1
        assert len(graph_store.list_nodes()) == 1
        assert provenance.list_items_for_source(first.source_id, include_deleted=True)[0].external_id == "a.md"

    def test_deletion_is_scoped_to_the_source(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md")], make_options())
        other = SourceIdentity(type="rss", name="feed")
        engine.ingest([make_record("x")], {"source": other})
        result = engine.ingest([], make_options(delete_mode="hard"))
        assert result.stats.deleted == 1
        assert [n.label for n in graph_store.list_nodes()] == ["Title x"]

    def test_failed_records_are_not_deleted(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md")], make_options())
        with patch.object(graph_store, "update_node", side_effect=RuntimeError("boom")):
            result = engine.ingest(
                [make_record("a.md", content="changed")], make_options(delete_mode="hard")
            )
        assert result.stats.errors == 1
        assert result.stats.deleted == 0
        assert len(graph_store.list_nodes()) == 1


class TestResurrection:
    def test_soft_deleted_item_comes_back_as_update(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        node_id = provenance.find_source_item(first.source_id, "b.md").node_id
        engine.ingest([make_record("a.md")], make_options(delete_mode="soft"))

        result = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        assert result.stats.updated == 1
        assert result.stats.skipped == 1
        item = provenance.find_source_item(first.source_id, "b.md")
        assert item.deleted_at is None
        assert item.node_id == node_id
        assert len(graph_store.list_nodes()) == 2

    def test_resurrect_recreates_missing_node(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md")], make_options())
        engine.ingest([], make_options(delete_mode="soft"))
        graph_store.delete_node(provenance.find_source_item(first.source_id, "a.md").node_id)

        result = engine.ingest([make_record("a.md")], make_options())
        assert result.stats.created == 1
        assert len(graph_store.list_nodes()) == 1
        assert provenance.find_source_item(first.source_id, "a.md").deleted_at is None


class TestEdges:
    def test_references_and_parents_become_edges(self, engine, graph_store, provenance, make_options, sample_records):
        result = engine.ingest(sample_records, make_options())
        a = _node_for(graph_store, provenance, result.source_id, "a.md")
        b = _node_for(graph_store, provenance, result.source_id, "b.md")
        c = _node_for(graph_store, provenance, result.source_id, "c.md")
        assert _edges(graph_store) == {(b.id, a.id, "references"), (c.id, a.id, "part_of")}
        assert all(e.metadata == {"source": "markdown:docs"} for e in graph_store.list_edges())

    def test_forward_references_resolve(self, engine, graph_store, make_options):
        result = engine.ingest(
            [make_record("first", references=["second"]), make_record("second")], make_options()
        )
        assert result.stats.errors == 0
        assert len(graph_store.list_edges(relationship_type="references")) == 1

    def test_references_resolve_against_earlier_runs(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md")], make_options())
        engine.ingest([make_record("a.md"), make_record("b.md", references=["a.md"])], make_options())
        assert len(graph_store.list_edges()) == 1

    def test_unresolvable_references_are_ignored(self, engine, graph_store, make_options):
        result = engine.ingest([make_record("a.md", references=["ghost.md"])], make_options())
        assert result.status == SyncRunStatus.COMPLETED
        assert graph_store.list_edges() == []

    def test_removed_reference_removes_edge(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md"), make_record("b.md", references=["a.md"])], make_options())
        engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        assert graph_store.list_edges() == []

    def test_edges_are_not_duplicated(self, engine, graph_store, make_options):
        records = [make_record("a.md"), make_record("b.md", references=["a.md", "a.md"])]
        engine.ingest(records, make_options())
        engine.ingest(records, make_options())
        assert len(graph_store.list_edges()) == 1

    def test_user_edges_are_left_alone(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        a = _node_for(graph_store, provenance, first.source_id, "a.md")
        b = _node_for(graph_store, provenance, first.source_id, "b.md")
        graph_store.create_edges([{"fromNodeId": b.id, "toNodeId": a.id, "relationshipType": "references"}])

        engine.ingest([make_record("a.md"), make_record("b.md", content="x")], make_options())
        assert len(graph_store.list_edges()) == 1

    def test_soft_deleted_targets_do_not_resolve(self, engine, graph_store, make_options):
        engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        engine.ingest([make_record("b.md")], make_options(delete_mode="soft"))
        engine.ingest([make_record("b.md", references=["a.md"])], make_options())
        assert graph_store.list_edges() == []


class TestErrors:
    def test_invalid_record_is_recorded_and_run_continues(self, engine, graph_store, make_options):
        result = engine.ingest(
            [make_record("a.md"), {"externalId": "", "title": "x", "content": ""}, {"externalId": "b.md"}],
            make_options(),
        )
        assert result.status == SyncRunStatus.PARTIAL
        assert result.stats.created == 1
        assert result.stats.errors == 2
        assert [e.external_id for e in result.errors] == ["(record 1)", "b.md"]
        assert len(graph_store.list_nodes()) == 1

    def test_slug_conflict_is_per_record(self, engine, graph_store, provenance, make_options, source):
        slug = build_source_aware_slug("Title b.md", source.source_key, "b.md")
        graph_store.create_nodes([{"label": "squatter", "slug": slug}])

        result = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        assert result.status == SyncRunStatus.PARTIAL
        assert result.stats.created == 1
        assert result.errors[0].external_id == "b.md"
        assert "slug" in result.errors[0].error
        assert provenance.find_source_item(result.source_id, "b.md") is None

    def test_errors_are_serialized_camel_case(self, engine, make_options):
        result = engine.ingest([{"externalId": "bad"}], make_options())
        payload = result.to_json_dict()
        assert payload["status"] == "partial"
        assert payload["errors"][0]["externalId"] == "bad"
        assert payload["stats"]["errors"] == 1

    def test_storage_failure_aborts_and_fails_run(self, graph_store, provenance, make_options):
        engine = IngestionEngine(graph_store, provenance)
        with patch.object(graph_store, "create_nodes", side_effect=StorageUnavailableError("disk gone")):
            with pytest.raises(StorageUnavailableError):
                engine.ingest([make_record("a.md"), make_record("b.md")], make_options())

        source_id = provenance.find_source(make_options().source).id
        runs = provenance.list_sync_runs(source_id)
        assert len(runs) == 1
        assert runs[0].status == SyncRunStatus.FAILED
        assert "disk gone" in runs[0].error

    def test_requires_both_stores(self, graph_store):
        with pytest.raises(ValueError):
            IngestionEngine(graph_store, None)


class TestSyncRuns:
    def test_run_is_recorded_with_stats(self, engine, provenance, make_options):
        result = engine.ingest([make_record("a.md"), {"externalId": "bad"}], make_options())
        run = provenance.get_sync_run(result.sync_run_id)
        assert run.status == SyncRunStatus.PARTIAL
        assert run.completed_at is not None
        assert run.stats["created"] == 1
        assert json.loads(run.error)[0]["externalId"] == "bad"

    def test_dry_run_records_nothing(self, engine, provenance, make_options):
        result = engine.ingest([make_record("a.md")], make_options(dry_run=True))
        assert result.sync_run_id is None
        assert result.source_id is None
        assert provenance.find_source(make_options().source) is None


class TestDryRun:
    def _scenario(self, engine, make_options, dry_run):
        engine.ingest([make_record("a.md"), make_record("b.md"), make_record("c.md")], make_options())
        engine.ingest([make_record("a.md"), make_record("b.md")], make_options(delete_mode="soft"))
        return engine.ingest(
            [
                make_record("a.md", content="changed"),
                make_record("c.md"),
                make_record("d.md"),
                make_record("d.md", content="dup"),
                {"externalId": "bad"},
            ],
            make_options(delete_mode="hard", dry_run=dry_run),
        )

    def test_stats_match_real_run(self, make_options):
        dry = self._scenario(IngestionEngine(InMemoryGraphStore(), MemoryProvenanceStore()), make_options, True)
        real = self._scenario(IngestionEngine(InMemoryGraphStore(), MemoryProvenanceStore()), make_options, False)
        assert _stats(dry) == _stats(real)
        assert _stats(real)["deleted"] == 1
        assert _stats(real)["updated"] == 3
        assert dry.status == real.status

    def test_dry_run_does_not_mutate(self, engine, graph_store, provenance, make_options):
        first = engine.ingest([make_record("a.md"), make_record("b.md")], make_options())
        nodes_before = [n.model_dump() for n in graph_store.list_nodes()]
        items_before = provenance.list_items_for_source(first.source_id, include_deleted=True)

        result = engine.ingest(
            [make_record("a.md", content="x"), make_record("c.md", references=["a.md"])],
            make_options(delete_mode="hard", dry_run=True),
        )
        assert _stats(result)["created"] == 1
        assert _stats(result)["updated"] == 1
        assert _stats(result)["deleted"] == 1
        assert [n.model_dump() for n in graph_store.list_nodes()] == nodes_before
        assert graph_store.list_edges() == []
        assert provenance.list_items_for_source(first.source_id, include_deleted=True) == items_before
        assert len(provenance.list_sync_runs(first.source_id)) == 1

    def test_dry_run_on_unknown_source(self, engine, graph_store, make_options):
        result = engine.ingest(
            [make_record("a.md"), make_record("b.md")], make_options(delete_mode="soft", dry_run=True)
        )
        assert result.stats.created == 2
        assert graph_store.list_nodes() == []


class TestConnectorEntryPoint:
    def test_records_are_fetched_and_ingested(self, engine, make_options):
        class StaticConnector:
            source_type = "markdown"

            def __init__(self):
                self.options = None

            def list_records(self, options=None):
                self.options = options
                return [IngestionRecord(external_id="a.md", title="A", content="")]

        connector = StaticConnector()
        result = engine.ingest_from_connector(connector, make_options(limit=5))
        assert result.stats.created == 1
        assert connector.options.limit == 5

    def test_connector_failure_aborts_before_writes(self, engine, graph_store, provenance, make_options):
        class BrokenConnector:
            source_type = "markdown"

            def list_records(self, options=None):
                raise IOError("network down")

        with pytest.raises(ConnectorError, match="network down"):
            engine.ingest_from_connector(BrokenConnector(), make_options())
        assert graph_store.list_nodes() == []
        assert provenance.find_source(make_options().source) is None


class TestWithFileBackedStore:
    def test_sync_survives_reopen(self, tmp_path, provenance, make_options, sample_records):
        path = tmp_path / "graph.json"
        store = FileBackedGraphStore(path, persist_interval_ms=500)
        IngestionEngine(store, provenance).ingest(sample_records, make_options())
        store.flush()

        reopened = FileBackedGraphStore(path)
        result = IngestionEngine(reopened, provenance).ingest(sample_records, make_options())
        assert result.stats.skipped == 3
        assert len(reopened.list_edges()) == 2
        reopened.close()
        store.close()

    def test_unflushed_graph_writes_are_recovered_on_next_run(self, tmp_path, sqlite_provenance, make_options, sample_records):
        path = tmp_path / "graph.json"
        store = FileBackedGraphStore(path, persist_interval_ms=60000)
        IngestionEngine(store, sqlite_provenance).ingest(sample_records, make_options())
        # Process dies before the debounced write: provenance is committed, the graph is not
        store._timer.cancel()
        assert not path.exists()

        reopened = FileBackedGraphStore(path, persist_interval_ms=0)
        result = IngestionEngine(reopened, sqlite_provenance).ingest(sample_records, make_options())
        assert result.stats.created == 3
        assert result.stats.skipped == 0
        assert result.stats.errors == 0
        assert len(reopened.list_nodes()) == 3
        assert len(reopened.list_edges()) == 2

        again = IngestionEngine(reopened, sqlite_provenance).ingest(sample_records, make_options())
        assert again.stats.skipped == 3
        reopened.close()
