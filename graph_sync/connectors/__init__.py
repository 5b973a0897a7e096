"""
Source connectors.
"""
from .base import BaseConnector
from .github import GitHubConnector
from .markdown import MarkdownConnector
from .notion_export import NotionExportConnector
from .rss import RSSFeedConnector

CONNECTORS = {
    "markdown": MarkdownConnector,
    "rss": RSSFeedConnector,
    "github": GitHubConnector,
    "notion": NotionExportConnector,
}

__all__ = [
    "BaseConnector",
    "GitHubConnector",
    "MarkdownConnector",
    "NotionExportConnector",
    "RSSFeedConnector",
    "CONNECTORS",
]
