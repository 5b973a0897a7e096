"""
Markdown connector: turns a directory tree of .md files into records.

External ids are POSIX paths relative to the root. Links between files
(wiki links and relative markdown links) become references.
"""
import logging
import os
import posixpath
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote

from ..errors import ConnectorError
from ..models_ingestion import ConnectorListOptions, IngestionRecord
from ..utils.slug import stable_slug_base
from ..utils.timestamp import from_timestamp, ensure_utc
from .base import BaseConnector

logger = logging.getLogger("graph_sync")

SKIP_DIRS = {"node_modules", ".git"}

# [[Target]] or [[Target|Label]]
WIKI_LINK_RE = re.compile(r'\[\[([^\[\]]+)\]\]')
# [label](target) or [label](target "title")
MD_LINK_RE = re.compile(r'\[[^\]]*\]\(([^)\s]+)(?:\s+"[^"]*")?\)')


def parse_frontmatter(markdown: str) -> Tuple[Dict[str, Any], str]:
    """
    Split simple `key: value` frontmatter from the body.

    Returns:
        (data, body); data is empty and body unchanged when there is no
        well-formed frontmatter block
    """
    normalized = markdown.replace("\r\n", "\n")
    if not normalized.startswith("---\n"):
        return {}, markdown
    end = normalized.find("\n---\n", 4)
    if end == -1:
        return {}, markdown

    data: Dict[str, Any] = {}
    for line in normalized[4:end].strip().split("\n"):
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        data[key] = value.strip()
    return data, normalized[end + len("\n---\n"):]


def first_heading(markdown: str) -> Optional[str]:
    for line in markdown.replace("\r\n", "\n").split("\n"):
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip()
    return None


def extract_markdown_links(markdown: str) -> List[str]:
    """Raw link targets in order of first appearance, wiki links first."""
    links = []
    for match in WIKI_LINK_RE.finditer(markdown):
        target = match.group(1).split("|")[0].strip()
        if target:
            links.append(target)
    for match in MD_LINK_RE.finditer(markdown):
        target = match.group(1).strip()
        if target:
            links.append(target)
    return list(dict.fromkeys(links))


def _is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def _stem(external_id: str) -> str:
    return posixpath.basename(external_id)[:-len(".md")]


class MarkdownConnector(BaseConnector):
    """Connector for a local tree of markdown files."""

    domain = "docs"

    def __init__(self, path: str):
        self.root = Path(path)

    @property
    def source_type(self) -> str:
        return "markdown"

    def _list_files(self) -> List[Tuple[Path, str]]:
        if not self.root.is_dir():
            raise ConnectorError(f"Markdown root is not a directory: {self.root}")
        results = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
            for filename in filenames:
                if filename.lower().endswith(".md"):
                    absolute = Path(dirpath) / filename
                    results.append((absolute, absolute.relative_to(self.root).as_posix()))
        return sorted(results, key=lambda item: item[1])

    def _parse_document(self, external_id: str, text: str) -> Dict[str, Any]:
        """Title, content, metadata and raw link targets of one file."""
        data, body = parse_frontmatter(text)
        title = (data.get("title") or "").strip() or first_heading(body) or _stem(external_id)
        return {
            "title": title,
            "content": body.strip(),
            "metadata": {**data, "filePath": external_id},
            "raw_links": extract_markdown_links(body),
        }

    def _parent_of(self, external_id: str, known: Set[str]) -> Optional[str]:
        return None

    def list_records(self, options: Optional[ConnectorListOptions] = None) -> List[IngestionRecord]:
        options = options or ConnectorListOptions()
        files = self._list_files()
        if options.limit:
            files = files[:options.limit]
        since = ensure_utc(options.since) if options.since else None

        parsed = []
        for absolute, external_id in files:
            if options.aborted:
                raise ConnectorError(f"{self.source_type} listing aborted")
            try:
                updated_at = from_timestamp(absolute.stat().st_mtime)
                if since and updated_at < since:
                    continue
                text = absolute.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ConnectorError(f"Cannot read {absolute}: {e}") from e

            parsed.append({
                "external_id": external_id,
                "updated_at": updated_at,
                "domain": self.domain,
                "node_type": "document",
                **self._parse_document(external_id, text),
            })

        by_external_id = {item["external_id"] for item in parsed}
        by_slug: Dict[str, str] = {}
        for item in parsed:
            by_slug[stable_slug_base(item["title"])] = item["external_id"]
            by_slug[stable_slug_base(_stem(item["external_id"]))] = item["external_id"]

        def resolve(current: str, raw: str) -> Optional[str]:
            target = unquote(raw).split("#")[0].strip()
            if not target or _is_http_url(target):
                return None
            # file-style links
            if "/" in target or target.endswith(".md") or target.startswith("."):
                if target.startswith("/"):
                    resolved = target[1:]
                else:
                    resolved = posixpath.join(posixpath.dirname(current), target)
                resolved = posixpath.normpath(resolved)
                if resolved in by_external_id:
                    return resolved
                if not resolved.endswith(".md") and f"{resolved}.md" in by_external_id:
                    return f"{resolved}.md"
                return None
            # wiki-style links by title
            return by_slug.get(stable_slug_base(target))

        records = []
        for item in parsed:
            raw_links = item.pop("raw_links")
            references = []
            for raw in raw_links:
                ref = resolve(item["external_id"], raw)
                if ref and ref != item["external_id"] and ref not in references:
                    references.append(ref)
            records.append(IngestionRecord(
                **item,
                references=references,
                parent_external_id=self._parent_of(item["external_id"], by_external_id),
            ))

        logger.info(f"{self.source_type.capitalize()} connector read {len(records)} records from {self.root}")
        return records
