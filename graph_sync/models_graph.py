"""
Graph entity models: nodes, edges and instance settings.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import Field

from .models_ingestion import CamelModel

DEFAULT_NODE_TYPE = "concept"
DEFAULT_DOMAIN = "general"
DEFAULT_RELATIONSHIP_TYPE = "related_to"
DEFAULT_EDGE_STRENGTH = 0.5


class Node(CamelModel):
    id: str
    slug: str
    label: str
    content: str = ""
    summary: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    domain: str = DEFAULT_DOMAIN
    node_type: str = DEFAULT_NODE_TYPE
    connection_count: int = 0
    inbound_count: int = 0
    outbound_count: int = 0
    created_at: datetime
    updated_at: datetime


class NodeCreate(CamelModel):
    """Input for creating a node; slug defaults to a slug of the label."""
    label: str
    slug: Optional[str] = None
    content: str = ""
    summary: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    domain: Optional[str] = None
    node_type: Optional[str] = None


class NodeUpdate(CamelModel):
    """Partial patch for a node. Slugs are immutable."""
    label: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    domain: Optional[str] = None
    node_type: Optional[str] = None


class Edge(CamelModel):
    id: str
    from_node_id: str
    to_node_id: str
    relationship_type: str = DEFAULT_RELATIONSHIP_TYPE
    strength: float = DEFAULT_EDGE_STRENGTH
    label: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    bidirectional: bool = False
    created_at: datetime
    updated_at: datetime


class EdgeCreate(CamelModel):
    from_node_id: str
    to_node_id: str
    relationship_type: Optional[str] = None
    strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    label: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    bidirectional: bool = False


class EdgeUpdate(CamelModel):
    relationship_type: Optional[str] = None
    strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    label: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    bidirectional: Optional[bool] = None


class GraphSettings(CamelModel):
    """Instance-level settings persisted alongside the graph."""
    instance_name: str = "graph-sync"
    node_types: List[str] = Field(default_factory=lambda: ["concept", "document", "article"])
    domains: List[str] = Field(default_factory=lambda: ["general", "docs", "rss"])
    relationship_types: List[str] = Field(
        default_factory=lambda: ["related_to", "references", "part_of"]
    )


class DeleteNodeResult(CamelModel):
    deleted: bool
    edges_removed: int = 0
