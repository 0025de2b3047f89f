#!/usr/bin/env python3

"""Main entry point for the note indexing and search application."""

import argparse
import logging
import sys
from typing import List, Optional

from textual.logging import TextualHandler

from .config import Settings, load_settings
from .engine import SearchEngine
from .errors import ConfigError, QueryError, SearchEngineError
from .indexer import index_glob
from .query import parse_query

logger = logging.getLogger("tika_notes")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tika",
        description="Index Markdown notes with YAML front matter and search them",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Config file (default: ~/.config/tika/config.toml)",
    )
    parser.add_argument(
        "-s",
        "--source",
        help="Glob of notes to index, overriding 'source-glob' from the config",
    )
    parser.add_argument(
        "-d",
        "--database",
        help="Index database path, overriding 'database' from the config",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (repeat for more)",
    )
    parser.add_argument(
        "-i",
        "--index",
        action="store_true",
        help="Index notes instead of searching",
    )

    subparsers = parser.add_subparsers(dest="command")
    query_parser = subparsers.add_parser("query", help="Run one search and print the results")
    query_parser.add_argument("query_string", metavar="QUERY", help="Query string")
    query_parser.add_argument(
        "-n",
        "--limit",
        type=positive_int,
        help="Maximum number of results (default: page size)",
    )
    query_parser.add_argument(
        "--explain",
        action="store_true",
        help="Print the parsed query before the results",
    )

    return parser.parse_args(argv)


def configure_logging(verbosity: int, interactive: bool = False) -> None:
    level = logging.WARNING - 10 * min(verbosity, 2)
    handler = TextualHandler() if interactive else logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(level)


def run_index(settings: Settings) -> int:
    if not settings.source_glob:
        print("Error: no notes to index, set 'source-glob' in the config or pass --source")
        return 1

    try:
        report = index_glob(settings.database, settings.source_glob)
    except SearchEngineError as e:
        print(f"Error: {e.message}")
        return 1

    for path, error in report.failed:
        print(f"❌ {path}: {error}")
    print(report.summary())
    return 0


def run_query(settings: Settings, query_string: str, limit: Optional[int], explain: bool) -> int:
    try:
        query = parse_query(query_string)
    except QueryError as e:
        print(f"Error: {e}")
        return 2

    if explain:
        print(f"Query: {query}")

    try:
        with SearchEngine.open(settings.database) as engine:
            match_set = engine.search(query, limit=limit or settings.page_size)
    except SearchEngineError as e:
        print(f"Error: {e.message}")
        return 1

    for match in match_set:
        doc = match.document
        print(f"{match.rank + 1:3d}  {match.weight:6.3f}  {doc.display_title}  {doc.full_path}")
    print(f"{len(match_set)} of {match_set.total} matches")
    return 0


def run_search(settings: Settings) -> int:
    from .ui import run_interactive

    try:
        selected = run_interactive(settings)
    except SearchEngineError as e:
        print(f"Error: {e.message}")
        return 1

    if selected:
        print(selected)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = parse_arguments(argv)
    interactive = not args.index and args.command is None
    configure_logging(args.verbose, interactive)

    try:
        settings = load_settings(args.config, args.source, args.database)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    if args.index:
        code = run_index(settings)
        if code or args.command is None:
            return code
    if args.command == "query":
        return run_query(settings, args.query_string, args.limit, args.explain)
    return run_search(settings)


if __name__ == "__main__":
    sys.exit(main())
