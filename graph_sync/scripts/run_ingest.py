#!/usr/bin/env python3
"""
Script to ingest a markdown tree, a Notion export, a GitHub repository or an
RSS feed into the graph. Safe for cron/GitHub Actions.

Usage:
    graph-sync-ingest --type markdown --name docs --path ./docs --delete-mode soft
    graph-sync-ingest --type notion --name wiki --path ./notion-export
    graph-sync-ingest --type github --name app --repo owner/app --state all
    graph-sync-ingest --type rss --name hn --url https://news.ycombinator.com/rss --dry-run
"""
import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from .. import config
from ..connectors import (
    CONNECTORS,
    BaseConnector,
    GitHubConnector,
    MarkdownConnector,
    NotionExportConnector,
    RSSFeedConnector,
)
from ..connectors.github import ISSUE_STATES
from ..errors import ConnectorError, GraphSyncError
from ..graph_store import get_graph_store
from ..models_ingestion import DeleteMode, IngestOptions, SourceIdentity
from ..provenance import get_provenance_store
from ..services_ingestion_engine import IngestionEngine
from ..utils.timestamp import parse_iso

logger = logging.getLogger("graph_sync")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest an external source into the graph")
    parser.add_argument(
        "--type",
        required=True,
        choices=sorted(CONNECTORS),
        help="Connector type"
    )
    parser.add_argument(
        "--name",
        required=True,
        help="Source name; together with --type it identifies the source across runs"
    )
    parser.add_argument(
        "--path",
        help="Root directory of the markdown tree or Notion export (markdown and notion only)"
    )
    parser.add_argument(
        "--url",
        help="Feed URL (rss only)"
    )
    parser.add_argument(
        "--repo",
        help="Repository as owner/name (github only; token from GITHUB_TOKEN)"
    )
    parser.add_argument(
        "--state",
        default="open",
        choices=list(ISSUE_STATES),
        help="Issue state filter (github only)"
    )
    parser.add_argument(
        "--delete-mode",
        default=DeleteMode.NONE.value,
        choices=[mode.value for mode in DeleteMode],
        help="What to do with items no longer in the source"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute the stats without writing anything"
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of records to fetch"
    )
    parser.add_argument(
        "--since",
        help="Only fetch records updated since this ISO-8601 timestamp (requires --delete-mode none)"
    )
    parser.add_argument(
        "--store-path",
        help=f"Graph snapshot file (default: GRAPH_STORE_PATH={config.GRAPH_STORE_PATH})"
    )
    parser.add_argument(
        "--provenance-path",
        help=f"Provenance SQLite file (default: PROVENANCE_SQLITE_PATH={config.PROVENANCE_SQLITE_PATH})"
    )
    return parser


def build_connector(
    parser: argparse.ArgumentParser,
    args: argparse.Namespace
) -> Tuple[BaseConnector, Dict[str, Any]]:
    """Connector and the source config recorded for it."""
    if args.type in ("markdown", "notion"):
        if not args.path:
            parser.error(f"--path is required for {args.type} sources")
        connector_class = MarkdownConnector if args.type == "markdown" else NotionExportConnector
        return connector_class(args.path), {"path": args.path}
    if args.type == "github":
        if not args.repo:
            parser.error("--repo is required for github sources")
        try:
            return GitHubConnector(args.repo, state=args.state), {"repo": args.repo, "state": args.state}
        except ConnectorError as e:
            parser.error(str(e))
    if not args.url:
        parser.error("--url is required for rss sources")
    return RSSFeedConnector(args.url), {"url": args.url}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.GRAPH_SYNC_LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.limit is not None and args.limit < 0:
        parser.error("--limit must not be negative")
    try:
        since = parse_iso(args.since)
    except ValueError:
        parser.error(f"--since is not an ISO-8601 timestamp: {args.since}")
    # An incremental listing omits unchanged items, which would look deleted
    if since is not None and args.delete_mode != DeleteMode.NONE.value:
        parser.error("--since cannot be combined with --delete-mode soft or hard")

    connector, source_config = build_connector(parser, args)

    options = IngestOptions(
        source=SourceIdentity(type=args.type, name=args.name, config=source_config),
        delete_mode=args.delete_mode,
        dry_run=args.dry_run,
        limit=args.limit,
        since=since,
    )

    store = None
    provenance = None
    try:
        store = get_graph_store(file_path=args.store_path)
        provenance = get_provenance_store(db_path=args.provenance_path)
        engine = IngestionEngine(store, provenance)
        result = engine.ingest_from_connector(connector, options)
        store.flush()
    except GraphSyncError as e:
        logger.error(f"Ingestion of {options.source.source_key} failed: {e}")
        return 1
    finally:
        if store is not None:
            try:
                store.close()
            except GraphSyncError as e:
                logger.error(f"Could not close graph store: {e}")
        if provenance is not None:
            provenance.close()

    print(json.dumps(result.to_json_dict(), indent=2))
    if result.errors:
        logger.warning(f"{len(result.errors)} records failed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
