"""Abstract base class for graph stores."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

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


class GraphStore(ABC):
    """Abstract interface for node/edge storage."""

    kind: str = "abstract"

    @abstractmethod
    def list_nodes(self, limit: Optional[int] = None, offset: int = 0) -> List[Node]:
        """List nodes in creation order."""
        pass

    @abstractmethod
    def get_node_by_id(self, node_id: str) -> Optional[Node]:
        pass

    @abstractmethod
    def get_node_by_slug(self, slug: str) -> Optional[Node]:
        pass

    @abstractmethod
    def create_nodes(self, nodes: List[Union[NodeCreate, Dict[str, Any]]]) -> List[Node]:
        """
        Create nodes as one batch.

        Raises:
            ConflictError: If a slug already exists or repeats within the batch
                (nothing is created)
        """
        pass

    @abstractmethod
    def update_node(self, node_id: str, patch: Union[NodeUpdate, Dict[str, Any]]) -> Optional[Node]:
        """Apply a partial update. Returns None if the node does not exist."""
        pass

    @abstractmethod
    def delete_node(self, node_id: str) -> DeleteNodeResult:
        """Delete a node and every edge touching it."""
        pass

    @abstractmethod
    def list_edges(
        self,
        node_id: Optional[str] = None,
        relationship_type: Optional[str] = None
    ) -> List[Edge]:
        """
        List edges, optionally only those touching node_id and/or of one
        relationship type.
        """
        pass

    @abstractmethod
    def create_edges(self, edges: List[Union[EdgeCreate, Dict[str, Any]]]) -> List[Edge]:
        """
        Create edges as one batch.

        Raises:
            ValidationError: If an endpoint node does not exist (nothing is created)
        """
        pass

    @abstractmethod
    def update_edge(self, edge_id: str, patch: Union[EdgeUpdate, Dict[str, Any]]) -> Optional[Edge]:
        pass

    @abstractmethod
    def delete_edge(self, edge_id: str) -> bool:
        pass

    @abstractmethod
    def get_settings(self) -> GraphSettings:
        pass

    @abstractmethod
    def update_settings(self, update: Dict[str, Any]) -> GraphSettings:
        pass

    @abstractmethod
    def reset_settings(self) -> GraphSettings:
        pass

    def flush(self) -> None:
        """Force pending writes to durable storage."""
        pass

    def close(self) -> None:
        """Flush and release resources."""
        self.flush()
