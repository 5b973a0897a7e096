"""
Base connector interface for ingestion sources.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..models_ingestion import ConnectorListOptions, IngestionRecord


class BaseConnector(ABC):
    """
    Abstract base class for source connectors.
    Connectors own the construction of IngestionRecords; the engine never
    reads the source directly.
    """

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the connector type (e.g., 'markdown', 'rss')."""
        pass

    @abstractmethod
    def list_records(self, options: Optional[ConnectorListOptions] = None) -> List[IngestionRecord]:
        """
        Fetch every record currently in the source.

        Args:
            options: limit must be honoured, since is best effort,
                signal may be checked to abort early

        Returns:
            List of IngestionRecord objects with unique external ids

        Raises:
            ConnectorError: If the source cannot be read
        """
        pass
