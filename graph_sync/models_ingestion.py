"""
Ingestion models: records produced by connectors, provenance rows, and the
options/results of an ingestion run.

Python attributes are snake_case; the serialized form uses camelCase aliases
(externalId, sourceId, ...) so results and stored rows keep one wire shape.
"""

import threading
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that accepts and emits camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class DeleteMode(str, Enum):
    """What to do with provenance items that are no longer in the source."""
    NONE = "none"
    SOFT = "soft"
    HARD = "hard"


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class IngestionRecord(CamelModel):
    """A single item as emitted by a connector."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    external_id: str = Field(min_length=1)
    title: str
    content: str
    url: Optional[str] = None
    updated_at: Optional[datetime] = None  # not part of the content hash
    metadata: Dict[str, Any] = Field(default_factory=dict)
    node_type: Optional[str] = None
    domain: Optional[str] = None
    references: List[str] = Field(default_factory=list)  # external ids in the same source
    parent_external_id: Optional[str] = None


class SourceIdentity(CamelModel):
    """Identifies a configured source; the key is `type:name`."""
    type: str = Field(min_length=1)  # markdown, rss, github, notion, ...
    name: str = Field(min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)

    @property
    def source_key(self) -> str:
        return f"{self.type}:{self.name}"


class IngestionSource(CamelModel):
    """Provenance row for a configured source."""
    id: str
    type: str
    name: str
    config: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def source_key(self) -> str:
        return f"{self.type}:{self.name}"


class SourceItem(CamelModel):
    """Provenance row mapping (source, external id) to a graph node."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    source_id: str
    external_id: str
    node_id: str
    content_hash: str
    last_seen_at: datetime
    deleted_at: Optional[datetime] = None


class SyncRun(CamelModel):
    """Provenance record of one non-dry ingestion run."""
    id: str
    source_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    stats: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class IngestOptions(CamelModel):
    """Options for one ingestion run."""
    source: SourceIdentity
    delete_mode: DeleteMode = DeleteMode.NONE
    dry_run: bool = False
    limit: Optional[int] = Field(default=None, ge=0)  # passed through to connectors
    since: Optional[datetime] = None  # passed through to connectors


class ConnectorListOptions(BaseModel):
    """Options handed to a connector's list_records."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    limit: Optional[int] = Field(default=None, ge=0)
    since: Optional[datetime] = None
    signal: Optional[threading.Event] = None

    @property
    def aborted(self) -> bool:
        return self.signal is not None and self.signal.is_set()


class IngestStats(CamelModel):
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: int = 0


class IngestItemError(CamelModel):
    external_id: str
    error: str


class IngestResult(CamelModel):
    """Outcome of IngestionEngine.ingest()."""
    source_id: Optional[str] = None  # None on a dry run against an unknown source
    sync_run_id: Optional[str] = None  # None on a dry run
    status: SyncRunStatus = SyncRunStatus.COMPLETED
    stats: IngestStats = Field(default_factory=IngestStats)
    errors: List[IngestItemError] = Field(default_factory=list)
