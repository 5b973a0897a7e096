"""
GitHub connector: issues and pull requests of one repository.

Each issue or PR becomes a record keyed by its html_url. `#123` mentions and
links to other issues/PRs of the same listing become references.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError

from .. import config
from ..errors import ConnectorError
from ..models_ingestion import ConnectorListOptions, IngestionRecord
from ..utils.timestamp import ensure_utc, parse_iso, to_iso
from .base import BaseConnector
from .http import build_retrying_session

logger = logging.getLogger("graph_sync")

ISSUE_STATES = ("open", "closed", "all")
DEFAULT_PER_PAGE = 100

ISSUE_NUMBER_REF_RE = re.compile(r'(?<!\w)#(\d+)\b')
GITHUB_ITEM_URL_RE = re.compile(r'https://github\.com/[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+/(?:issues|pull)/\d+')


def parse_repo(repo: str) -> Tuple[str, str]:
    """Split `owner/name`."""
    parts = (repo or "").split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ConnectorError(f"Invalid GitHub repo {repo!r} (expected owner/name)")
    return parts[0], parts[1]


def extract_issue_number_refs(text: str) -> List[int]:
    return list(dict.fromkeys(int(m.group(1)) for m in ISSUE_NUMBER_REF_RE.finditer(text)))


def extract_github_urls(text: str) -> List[str]:
    return list(dict.fromkeys(m.group(0) for m in GITHUB_ITEM_URL_RE.finditer(text)))


def _label_name(label: Any) -> str:
    if isinstance(label, dict):
        return label.get("name") or ""
    return label if isinstance(label, str) else ""


class GitHubConnector(BaseConnector):
    """
    Connector for the issues API of a single repository.

    The issues endpoint returns pull requests too; they are told apart by
    the `pull_request` key and get node type "pull_request".
    """

    def __init__(
        self,
        repo: str,
        token: Optional[str] = None,
        state: str = "open",
        api_base_url: Optional[str] = None,
        per_page: int = DEFAULT_PER_PAGE,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            repo: Repository as owner/name
            token: API token (defaults to GITHUB_TOKEN)
            state: Issue state filter: open, closed or all
            api_base_url: API root (defaults to GITHUB_API_BASE_URL)
            per_page: Page size for the listing
            session: Preconfigured session (a retrying session is built if omitted)
        """
        if state not in ISSUE_STATES:
            raise ValueError(f"state must be one of {ISSUE_STATES}, got {state!r}")
        self.owner, self.name = parse_repo(repo)
        self.state = state
        self.api_base_url = (api_base_url or config.GITHUB_API_BASE_URL).rstrip("/")
        self.per_page = per_page
        self.session = session or build_retrying_session({"User-Agent": config.GITHUB_USER_AGENT})
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        token = token or config.GITHUB_TOKEN
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    @property
    def source_type(self) -> str:
        return "github"

    @property
    def repo(self) -> str:
        return f"{self.owner}/{self.name}"

    def _fetch_page(self, page: int, options: ConnectorListOptions) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"state": self.state, "per_page": self.per_page, "page": page}
        if options.since:
            params["since"] = to_iso(ensure_utc(options.since))
        url = f"{self.api_base_url}/repos/{self.owner}/{self.name}/issues"
        try:
            response = self.session.get(url, params=params, timeout=config.GITHUB_REQUEST_TIMEOUT)
            response.raise_for_status()
            batch = response.json()
        except requests.RequestException as e:
            raise ConnectorError(f"GitHub request failed for {self.repo} (page {page}): {e}") from e
        except ValueError as e:
            raise ConnectorError(f"GitHub returned invalid JSON for {self.repo}: {e}") from e
        if not isinstance(batch, list):
            raise ConnectorError(f"Unexpected GitHub response for {self.repo}: expected a list")
        return batch

    def _to_record(self, item: Dict[str, Any]) -> IngestionRecord:
        try:
            updated_at = parse_iso(item.get("updated_at"))
        except ValueError:
            updated_at = None
        user = item.get("user") or {}
        return IngestionRecord(
            external_id=item["html_url"],
            url=item["html_url"],
            title=f"{self.repo}#{item['number']}: {item.get('title') or ''}",
            content=item.get("body") or "",
            updated_at=updated_at,
            domain="github",
            node_type="pull_request" if item.get("pull_request") else "issue",
            metadata={
                "repo": self.repo,
                "number": item["number"],
                "state": item.get("state"),
                "author": user.get("login"),
                "labels": [name for name in map(_label_name, item.get("labels") or []) if name],
            },
        )

    def list_records(self, options: Optional[ConnectorListOptions] = None) -> List[IngestionRecord]:
        options = options or ConnectorListOptions()
        records: List[IngestionRecord] = []
        page = 1
        while True:
            if options.aborted:
                raise ConnectorError("GitHub listing aborted")
            batch = self._fetch_page(page, options)
            if not batch:
                break
            for item in batch:
                try:
                    records.append(self._to_record(item))
                except (KeyError, TypeError, PydanticValidationError) as e:
                    raise ConnectorError(f"Malformed GitHub issue in {self.repo}: {e}") from e
                if options.limit and len(records) >= options.limit:
                    break
            if options.limit and len(records) >= options.limit:
                break
            if len(batch) < self.per_page:
                break
            page += 1

        records = self._with_references(records)
        logger.info(f"GitHub connector read {len(records)} records from {self.repo}")
        return records

    def _with_references(self, records: List[IngestionRecord]) -> List[IngestionRecord]:
        by_number = {r.metadata["number"]: r.external_id for r in records}
        known = {r.external_id for r in records}

        resolved = []
        for record in records:
            text = f"{record.title}\n{record.content}"
            refs = [by_number[n] for n in extract_issue_number_refs(text) if n in by_number]
            refs += [url for url in extract_github_urls(text) if url in known]
            references = [ref for ref in dict.fromkeys(refs) if ref != record.external_id]
            resolved.append(record.model_copy(update={"references": references}))
        return resolved
