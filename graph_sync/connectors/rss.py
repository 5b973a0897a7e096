"""
RSS/Atom connector for ingesting feed entries.
"""
import calendar
import logging
from datetime import datetime
from typing import Dict, List, Optional

import feedparser
import requests
from bs4 import BeautifulSoup

from .. import config
from ..errors import ConnectorError
from ..models_ingestion import ConnectorListOptions, IngestionRecord
from ..utils.timestamp import ensure_utc, from_timestamp
from .base import BaseConnector
from .http import build_retrying_session

logger = logging.getLogger("graph_sync")


def html_to_text(html: str) -> str:
    """Strip tags and collapse whitespace."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return " ".join(soup.get_text(separator=" ").split())


def _entry_datetime(entry) -> Optional[datetime]:
    for key in ("updated_parsed", "published_parsed"):
        parsed = entry.get(key)
        if parsed:
            # feedparser normalizes to a UTC struct_time
            return from_timestamp(calendar.timegm(parsed))
    return None


def _entry_html(entry) -> str:
    content = entry.get("content")
    if content:
        value = content[0].get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


class RSSFeedConnector(BaseConnector):
    """
    Connector for a single RSS or Atom feed.
    Ingests title, link and the entry body (HTML stripped).
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            url: Feed URL
            headers: Extra request headers
            session: Preconfigured session (a retrying session is built if omitted)
        """
        self.url = url
        self.session = session or self._build_session()
        if headers:
            self.session.headers.update(headers)

    @staticmethod
    def _build_session() -> requests.Session:
        return build_retrying_session({
            "User-Agent": config.RSS_USER_AGENT,
            "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
        })

    @property
    def source_type(self) -> str:
        return "rss"

    def list_records(self, options: Optional[ConnectorListOptions] = None) -> List[IngestionRecord]:
        options = options or ConnectorListOptions()
        if options.aborted:
            raise ConnectorError("RSS fetch aborted")

        try:
            response = self.session.get(self.url, timeout=config.RSS_REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ConnectorError(f"RSS request failed for {self.url}: {e}") from e

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            raise ConnectorError(f"Could not parse feed {self.url}: {feed.get('bozo_exception')}")
        if feed.bozo:
            logger.warning(f"Feed parsing issues for {self.url}: {feed.get('bozo_exception')}")

        since = ensure_utc(options.since) if options.since else None
        records = []
        for entry in feed.entries:
            link = entry.get("link") or None
            external_id = entry.get("id") or link
            if not external_id:
                continue
            updated_at = _entry_datetime(entry)
            if since and updated_at and updated_at < since:
                continue
            records.append(IngestionRecord(
                external_id=external_id,
                url=link,
                title=entry.get("title") or "Untitled",
                content=html_to_text(_entry_html(entry)),
                updated_at=updated_at,
                domain="rss",
                node_type="article",
                metadata={"link": link},
            ))

        if options.limit:
            records = records[:options.limit]
        logger.info(f"RSS connector read {len(records)} records from {self.url}")
        return records
