"""In-memory graph store."""
import threading
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..errors import ConflictError, ValidationError
from ..models_graph import (
    DEFAULT_DOMAIN,
    DEFAULT_EDGE_STRENGTH,
    DEFAULT_NODE_TYPE,
    DEFAULT_RELATIONSHIP_TYPE,
    DeleteNodeResult,
    Edge,
    EdgeCreate,
    EdgeUpdate,
    GraphSettings,
    Node,
    NodeCreate,
    NodeUpdate,
)
from ..utils.slug import generate_slug
from ..utils.timestamp import utcnow
from .base import GraphStore


def _coerce(model_cls, value):
    if isinstance(value, model_cls):
        return value
    try:
        return model_cls.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__}: {e}") from e


class InMemoryGraphStore(GraphStore):
    """
    Graph store holding every node and edge in process memory.

    Also the working state behind FileBackedGraphStore, which is why it can be
    built from snapshot data and exported back with to_snapshot_data().
    """

    kind = "memory"

    def __init__(
        self,
        nodes: Optional[Iterable[Union[Node, Dict[str, Any]]]] = None,
        edges: Optional[Iterable[Union[Edge, Dict[str, Any]]]] = None,
        settings: Optional[Union[GraphSettings, Dict[str, Any]]] = None
    ):
        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._slug_index: Dict[str, str] = {}
        self._edges: Dict[str, Edge] = {}
        self._settings = _coerce(GraphSettings, settings) if settings is not None else GraphSettings()

        for raw in nodes or []:
            node = _coerce(Node, raw)
            self._nodes[node.id] = node
            self._slug_index[node.slug] = node.id
        for raw in edges or []:
            edge = _coerce(Edge, raw)
            # Drop dangling edges left by a hand-edited snapshot
            if edge.from_node_id in self._nodes and edge.to_node_id in self._nodes:
                self._edges[edge.id] = edge
        self._recompute_connection_counts()

    # ---- nodes ----

    def list_nodes(self, limit: Optional[int] = None, offset: int = 0) -> List[Node]:
        with self._lock:
            nodes = list(self._nodes.values())
        end = None if limit is None else offset + limit
        return [node.model_copy(deep=True) for node in nodes[offset:end]]

    def get_node_by_id(self, node_id: str) -> Optional[Node]:
        with self._lock:
            node = self._nodes.get(node_id)
            return node.model_copy(deep=True) if node else None

    def get_node_by_slug(self, slug: str) -> Optional[Node]:
        with self._lock:
            node_id = self._slug_index.get(slug)
            return self._nodes[node_id].model_copy(deep=True) if node_id else None

    def create_nodes(self, nodes: List[Union[NodeCreate, Dict[str, Any]]]) -> List[Node]:
        inputs = [_coerce(NodeCreate, raw) for raw in nodes]
        with self._lock:
            slugs = []
            for item in inputs:
                slug = item.slug or generate_slug(item.label)
                if not slug:
                    raise ValidationError(f"Cannot derive a slug for node {item.label!r}")
                if slug in self._slug_index or slug in slugs:
                    raise ConflictError(f"Node slug already exists: {slug}")
                slugs.append(slug)

            now = utcnow()
            created = []
            for item, slug in zip(inputs, slugs):
                node = Node(
                    id=str(uuid.uuid4()),
                    slug=slug,
                    label=item.label,
                    content=item.content,
                    summary=item.summary,
                    description=item.description,
                    metadata=dict(item.metadata),
                    domain=item.domain or DEFAULT_DOMAIN,
                    node_type=item.node_type or DEFAULT_NODE_TYPE,
                    created_at=now,
                    updated_at=now,
                )
                self._nodes[node.id] = node
                self._slug_index[slug] = node.id
                created.append(node.model_copy(deep=True))
            return created

    def update_node(self, node_id: str, patch: Union[NodeUpdate, Dict[str, Any]]) -> Optional[Node]:
        patch = _coerce(NodeUpdate, patch)
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            changes = patch.model_dump(exclude_unset=True)
            # None on a non-nullable field means "leave as is"
            for field in ("label", "content", "metadata", "domain", "node_type"):
                if changes.get(field, "") is None:
                    changes.pop(field)
            changes["updated_at"] = utcnow()
            updated = node.model_copy(update=changes, deep=True)
            self._nodes[node_id] = updated
            return updated.model_copy(deep=True)

    def delete_node(self, node_id: str) -> DeleteNodeResult:
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                return DeleteNodeResult(deleted=False, edges_removed=0)
            self._slug_index.pop(node.slug, None)
            incident = [
                edge_id for edge_id, edge in self._edges.items()
                if edge.from_node_id == node_id or edge.to_node_id == node_id
            ]
            for edge_id in incident:
                del self._edges[edge_id]
            self._recompute_connection_counts()
            return DeleteNodeResult(deleted=True, edges_removed=len(incident))

    # ---- edges ----

    def list_edges(
        self,
        node_id: Optional[str] = None,
        relationship_type: Optional[str] = None
    ) -> List[Edge]:
        with self._lock:
            edges = list(self._edges.values())
        if node_id is not None:
            edges = [e for e in edges if node_id in (e.from_node_id, e.to_node_id)]
        if relationship_type is not None:
            edges = [e for e in edges if e.relationship_type == relationship_type]
        return [edge.model_copy(deep=True) for edge in edges]

    def create_edges(self, edges: List[Union[EdgeCreate, Dict[str, Any]]]) -> List[Edge]:
        inputs = [_coerce(EdgeCreate, raw) for raw in edges]
        with self._lock:
            for item in inputs:
                for endpoint in (item.from_node_id, item.to_node_id):
                    if endpoint not in self._nodes:
                        raise ValidationError(f"Edge endpoint node not found: {endpoint}")

            now = utcnow()
            created = []
            for item in inputs:
                edge = Edge(
                    id=str(uuid.uuid4()),
                    from_node_id=item.from_node_id,
                    to_node_id=item.to_node_id,
                    relationship_type=item.relationship_type or DEFAULT_RELATIONSHIP_TYPE,
                    strength=DEFAULT_EDGE_STRENGTH if item.strength is None else item.strength,
                    label=item.label,
                    metadata=dict(item.metadata),
                    bidirectional=item.bidirectional,
                    created_at=now,
                    updated_at=now,
                )
                self._edges[edge.id] = edge
                created.append(edge.model_copy(deep=True))
            self._recompute_connection_counts()
            return created

    def update_edge(self, edge_id: str, patch: Union[EdgeUpdate, Dict[str, Any]]) -> Optional[Edge]:
        patch = _coerce(EdgeUpdate, patch)
        with self._lock:
            edge = self._edges.get(edge_id)
            if edge is None:
                return None
            changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
            changes["updated_at"] = utcnow()
            updated = edge.model_copy(update=changes, deep=True)
            self._edges[edge_id] = updated
            self._recompute_connection_counts()
            return updated.model_copy(deep=True)

    def delete_edge(self, edge_id: str) -> bool:
        with self._lock:
            if self._edges.pop(edge_id, None) is None:
                return False
            self._recompute_connection_counts()
            return True

    # ---- settings ----

    def get_settings(self) -> GraphSettings:
        with self._lock:
            return self._settings.model_copy(deep=True)

    def update_settings(self, update: Dict[str, Any]) -> GraphSettings:
        with self._lock:
            merged = {**self._settings.model_dump(), **update}
            self._settings = _coerce(GraphSettings, merged)
            return self._settings.model_copy(deep=True)

    def reset_settings(self) -> GraphSettings:
        with self._lock:
            self._settings = GraphSettings()
            return self._settings.model_copy(deep=True)

    # ---- snapshot support ----

    def to_snapshot_data(self) -> Dict[str, Any]:
        """Export nodes, edges and settings in their camelCase JSON form."""
        with self._lock:
            return {
                "nodes": [node.to_json_dict() for node in self._nodes.values()],
                "edges": [edge.to_json_dict() for edge in self._edges.values()],
                "settings": self._settings.to_json_dict(),
            }

    def _recompute_connection_counts(self) -> None:
        inbound: Dict[str, int] = defaultdict(int)
        outbound: Dict[str, int] = defaultdict(int)
        for edge in self._edges.values():
            outbound[edge.from_node_id] += 1
            inbound[edge.to_node_id] += 1
            if edge.bidirectional:
                outbound[edge.to_node_id] += 1
                inbound[edge.from_node_id] += 1
        for node_id, node in self._nodes.items():
            in_count = inbound.get(node_id, 0)
            out_count = outbound.get(node_id, 0)
            if (node.inbound_count, node.outbound_count, node.connection_count) != (
                in_count, out_count, in_count + out_count
            ):
                self._nodes[node_id] = node.model_copy(update={
                    "inbound_count": in_count,
                    "outbound_count": out_count,
                    "connection_count": in_count + out_count,
                })
