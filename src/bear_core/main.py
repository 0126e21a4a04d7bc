#!/usr/bin/env python
"""Command line entry point for searching a Bear notes database."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from bear_core import __version__
from bear_core.config import config
from bear_core.exceptions import BearCoreError
from bear_core.models.db_models import create_engine_for
from bear_core.models.schema import SearchFields, SortKey, SortOrder
from bear_core.observability import configure_logging, metrics
from bear_core.services.search_service import SearchService
from bear_core.storage.sql_store import SqlNoteStore


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Search a Bear notes database")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--database-path",
        help="Bear SQLite database file path",
        type=str,
        default=os.environ.get("BEAR_CORE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("BEAR_CORE_LOG_LEVEL", "WARNING")
    )
    parser.add_argument(
        "--log-dir",
        help="Write rotating log files to this directory",
        type=str,
        default=None
    )
    parser.add_argument(
        "--metrics-file",
        help="Persist operation metrics to this JSON file",
        type=str,
        default=os.environ.get("BEAR_CORE_METRICS_FILE")
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Rank notes against a query")
    search.add_argument("text", nargs="?", default="", help="Search text")
    search.add_argument(
        "--tag", dest="tags", action="append", default=[],
        help="Only notes with this tag (repeatable)"
    )
    search.add_argument(
        "--exclude-tag", dest="exclude_tags", action="append", default=[],
        help="Leave out notes with this tag (repeatable)"
    )
    search.add_argument(
        "--match-all", action="store_true",
        help="Require every --tag instead of any"
    )
    search.add_argument("--limit", type=int, default=20)
    search.add_argument("--offset", type=int, default=0)
    search.add_argument(
        "--sort-by", choices=[k.value for k in SortKey], default=SortKey.RELEVANCE.value
    )
    search.add_argument(
        "--sort-order", choices=[o.value for o in SortOrder], default=SortOrder.DESC.value
    )
    search.add_argument("--include-archived", action="store_true")
    search.add_argument("--include-trashed", action="store_true")
    search.add_argument(
        "--fuzzy", action="store_true", help="Credit near-miss spellings"
    )
    search.add_argument(
        "--fields", choices=[f.value for f in SearchFields],
        default=SearchFields.BOTH.value, help="Match text against title, body or both"
    )
    search.add_argument(
        "--no-snippets", action="store_true", help="Leave out body snippets"
    )

    suggest = subparsers.add_parser("suggest", help="Complete a partial query")
    suggest.add_argument("prefix", help="Partial query text")
    suggest.add_argument("--limit", type=int, default=10)

    stats = subparsers.add_parser("stats", help="Show recorded operation metrics")
    stats.add_argument(
        "--reset", action="store_true", help="Clear the metrics after showing them"
    )

    return parser.parse_args(argv)


def build_service(args) -> SearchService:
    """Create a search service over the database named by the arguments."""
    updates = {}
    if args.database_path:
        updates["database_path"] = Path(args.database_path)
    core_config = config.model_copy(update=updates)
    engine = create_engine_for(core_config.get_db_url(read_only=True), read_only=True)
    return SearchService(SqlNoteStore(engine), config=core_config)


def run_command(service: SearchService, args) -> dict:
    """Execute the selected subcommand and return a JSON-ready payload."""
    if args.command == "suggest":
        return service.suggest(prefix=args.prefix, limit=args.limit).to_dict()

    query = service.build_query(
        args.text,
        tags=args.tags,
        exclude_tags=args.exclude_tags,
        tag_match="all" if args.match_all else "any",
        limit=args.limit,
        offset=args.offset,
        sort_by=args.sort_by,
        sort_order=args.sort_order,
        include_archived=args.include_archived,
        include_trashed=args.include_trashed,
        search_fields=args.fields,
        include_snippets=not args.no_snippets,
    )
    options = {"fuzzy_match": True} if args.fuzzy else None
    results = service.search(query, options=options)
    return {
        "query": args.text,
        "count": len(results),
        "results": [result.to_dict() for result in results],
    }


def collect_stats(reset: bool = False) -> dict:
    """Snapshot the recorded operation metrics, optionally clearing them."""
    payload = {"summary": metrics.get_summary(), "operations": metrics.get_metrics()}
    if reset:
        metrics.reset()
        metrics.save_metrics()
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line interface."""
    args = parse_args(argv)

    try:
        configure_logging(
            log_dir=args.log_dir,
            level=args.log_level,
            console=True,
            file_logging=args.log_dir is not None,
        )
    except OSError as e:
        logging.basicConfig(level=args.log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)

    metrics_file = args.metrics_file or config.metrics_file
    if metrics_file:
        metrics.set_metrics_file(metrics_file)

    if args.command == "stats":
        print(json.dumps(collect_stats(reset=args.reset), indent=2, default=str))
        return 0

    if not (args.database_path or config.database_path):
        print(json.dumps({"error": "No database path given"}), file=sys.stderr)
        return 2

    try:
        with build_service(args) as service:
            payload = run_command(service, args)
    except BearCoreError as e:
        logger.error(f"Command {args.command} failed: {e}")
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1
    finally:
        metrics.save_metrics()

    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
