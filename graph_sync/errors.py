"""
Error taxonomy for graph-sync.

Per-item errors (ValidationError, ConflictError) are recorded on the ingest
result and the run continues. Store-level errors (UnsupportedVersionError,
StorageUnavailableError) abort the run. ConnectorError is raised before any
store is touched.
"""


class GraphSyncError(Exception):
    """Base class for all graph-sync errors."""


class ValidationError(GraphSyncError):
    """A record, node or edge failed validation."""


class ConflictError(GraphSyncError):
    """A slug or provenance key collided with an existing entry."""


class UnsupportedVersionError(GraphSyncError):
    """A graph snapshot was written with an unknown format version."""

    def __init__(self, version, path=None):
        self.version = version
        self.path = path
        where = f" in {path}" if path else ""
        super().__init__(f"unsupported file version {version!r}{where}")


class StorageUnavailableError(GraphSyncError):
    """The graph file or the provenance backend cannot be read or written."""


class ConnectorError(GraphSyncError):
    """A connector failed while fetching records."""
