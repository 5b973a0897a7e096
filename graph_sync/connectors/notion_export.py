"""
Notion export connector: reads a Notion workspace exported as Markdown.

Notion exports each page as `<Page>.md` and its subpages under a sibling
`<Page>/` directory, so `Page/Child.md` becomes part_of `Page.md`.
"""
import posixpath
from typing import Any, Dict, Optional, Set

from .markdown import MarkdownConnector, _stem, extract_markdown_links, first_heading


class NotionExportConnector(MarkdownConnector):
    """Connector for an unzipped Notion Markdown export."""

    domain = "notion"

    @property
    def source_type(self) -> str:
        return "notion"

    def _parse_document(self, external_id: str, text: str) -> Dict[str, Any]:
        # Exports carry no frontmatter; the page title is the first heading
        return {
            "title": first_heading(text) or _stem(external_id),
            "content": text.strip(),
            "metadata": {"filePath": external_id},
            "raw_links": extract_markdown_links(text),
        }

    def _parent_of(self, external_id: str, known: Set[str]) -> Optional[str]:
        directory = posixpath.dirname(external_id)
        if not directory:
            return None
        candidate = f"{directory}.md"
        return candidate if candidate in known else None
