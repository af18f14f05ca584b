#!/usr/bin/env python3
"""
CLI for capturing snapshots and computing, rendering and replaying fixtures.

Usage:
    dbfixture capture --db app.db --out before.json [--tables users,orders]
    dbfixture diff    --before before.json --after after.json --out fixture.json [--truncate-disjoint]
    dbfixture render  --fixture fixture.json [--dialect sqlserver]
    dbfixture replay  --fixture fixture.json --db app.db [--no-strict]
    dbfixture graph   --snapshot after.json

Exit codes: 0 success, 1 error, 2 snapshots not diffable.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dbfixture.backends.sqlite_backend import SqliteConnectOptions, capture_sqlite
from dbfixture.config.config_loader import FixtureConfig
from dbfixture.core.errors import DiffError, FixtureError
from dbfixture.core.fixture import Fixture
from dbfixture.core.models import Snapshot
from dbfixture.diff.engine import DiffEngine
from dbfixture.diff.grapher import DependencyGraph
from dbfixture.replay.replayer import FixtureReplayer
from dbfixture.replay.sql_render import DIALECTS, SQLITE, get_dialect, render_script
from dbfixture.serialization.canonical import snapshot_fingerprint


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_DIFFABLE = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_environment() -> None:
    """Load a local .env so DBFIXTURE_* settings need not be exported."""
    try:
        from dotenv import load_dotenv
    except ImportError:
        # dotenv is optional
        return
    load_dotenv()


def load_config(args) -> FixtureConfig:
    return FixtureConfig(Path(args.config) if args.config else None)


def cmd_capture(args) -> int:
    """Capture a SQLite database file to a snapshot JSON file."""
    logger = logging.getLogger(__name__)

    db_path = Path(args.db)
    if not db_path.exists():
        logger.error(f"Database not found: {db_path}")
        return EXIT_ERROR

    tables = [t.strip() for t in args.tables.split(",") if t.strip()] if args.tables else None

    conn = SqliteConnectOptions().filename(db_path).read_only(True).connect()
    try:
        snapshot = capture_sqlite(conn, tables)
    except FixtureError as e:
        logger.error(f"Capture failed: {e}")
        return EXIT_ERROR
    finally:
        conn.close()

    snapshot.save(Path(args.out))

    print(f"Captured {len(snapshot)} tables ({snapshot.row_count} rows)")
    print(f"Fingerprint: {snapshot_fingerprint(snapshot)}")
    return EXIT_OK


def cmd_diff(args) -> int:
    """Compute the fixture between two snapshot files."""
    logger = logging.getLogger(__name__)
    config = load_config(args)

    try:
        before = Snapshot.load(Path(args.before))
        after = Snapshot.load(Path(args.after))
    except (OSError, FixtureError) as e:
        logger.error(f"Failed to load snapshot: {e}")
        return EXIT_ERROR

    truncate_disjoint = args.truncate_disjoint or bool(config.get("diff.truncate_disjoint", False))

    try:
        fixture = DiffEngine(truncate_disjoint=truncate_disjoint).diff(before, after)
    except DiffError as e:
        logger.error(f"Snapshots are not diffable: {e}")
        return EXIT_NOT_DIFFABLE

    if args.out:
        fixture.save(Path(args.out))

    print(fixture.summary())

    if args.json:
        print("\n" + json.dumps(fixture.to_dict(), indent=2, ensure_ascii=False))

    return EXIT_OK


def cmd_render(args) -> int:
    """Render a fixture as an SQL script."""
    logger = logging.getLogger(__name__)

    try:
        fixture = Fixture.load(Path(args.fixture))
        script = render_script(fixture, get_dialect(args.dialect))
    except (OSError, ValueError, FixtureError) as e:
        logger.error(f"Failed to render fixture: {e}")
        return EXIT_ERROR

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(script, encoding="utf-8")
        logger.info(f"Wrote script to: {out}")
    else:
        sys.stdout.write(script)

    return EXIT_OK


def cmd_replay(args) -> int:
    """Replay a fixture against a SQLite database file."""
    logger = logging.getLogger(__name__)
    config = load_config(args)

    db_path = Path(args.db)
    if not db_path.exists():
        logger.error(f"Database not found: {db_path}")
        return EXIT_ERROR

    try:
        fixture = Fixture.load(Path(args.fixture))
    except (OSError, FixtureError) as e:
        logger.error(f"Failed to load fixture: {e}")
        return EXIT_ERROR

    strict = bool(config.get("replay.strict", True)) and not args.no_strict

    conn = SqliteConnectOptions.from_config(config.get_backend_config("sqlite")).filename(db_path).connect()
    try:
        report = FixtureReplayer(conn, SQLITE, strict=strict).replay(fixture)
    except FixtureError as e:
        logger.error(f"Replay failed: {e}")
        return EXIT_ERROR
    finally:
        conn.close()

    print(report.summary())
    return EXIT_OK


def cmd_graph(args) -> int:
    """Print the foreign key ordering of a snapshot."""
    logger = logging.getLogger(__name__)

    try:
        snapshot = Snapshot.load(Path(args.snapshot))
    except (OSError, FixtureError) as e:
        logger.error(f"Failed to load snapshot: {e}")
        return EXIT_ERROR

    graph = DependencyGraph.from_snapshot(snapshot)

    print("Insert order:")
    for table in graph.insert_order:
        deps = graph.dependencies(table)
        print(f"  {table}" + (f" -> {', '.join(deps)}" if deps else ""))

    print("Delete order:")
    for table in graph.delete_order:
        print(f"  {table}")

    if graph.has_cycles:
        print("Cycles:")
        for message in graph.diagnostics:
            print(f"  {message}")

    return EXIT_OK


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="dbfixture",
        description="Database snapshot diff and fixture replay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument("--config", help="Path to YAML config file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Capture command
    capture_parser = subparsers.add_parser("capture", help="Capture a SQLite database to a snapshot")
    capture_parser.add_argument("--db", required=True, help="Path to SQLite database file")
    capture_parser.add_argument("--out", required=True, help="Output snapshot JSON path")
    capture_parser.add_argument("--tables", help="Comma-separated table filter")

    # Diff command
    diff_parser = subparsers.add_parser("diff", help="Compute the fixture between two snapshots")
    diff_parser.add_argument("--before", required=True, help="Snapshot before the workload")
    diff_parser.add_argument("--after", required=True, help="Snapshot after the workload")
    diff_parser.add_argument("--out", help="Output fixture JSON path")
    diff_parser.add_argument("--truncate-disjoint", action="store_true",
                             help="Truncate tables whose rows were all replaced")
    diff_parser.add_argument("--json", action="store_true", help="Print the fixture as JSON")

    # Render command
    render_parser = subparsers.add_parser("render", help="Render a fixture as SQL")
    render_parser.add_argument("--fixture", required=True, help="Path to fixture JSON")
    render_parser.add_argument("--dialect", choices=sorted(DIALECTS), default="sqlite",
                               help="Target SQL dialect")
    render_parser.add_argument("--out", help="Output SQL path (default: stdout)")

    # Replay command
    replay_parser = subparsers.add_parser("replay", help="Replay a fixture against a SQLite database")
    replay_parser.add_argument("--fixture", required=True, help="Path to fixture JSON")
    replay_parser.add_argument("--db", required=True, help="Path to SQLite database file")
    replay_parser.add_argument("--no-strict", action="store_true",
                               help="Do not fail when a statement affects an unexpected row count")

    # Graph command
    graph_parser = subparsers.add_parser("graph", help="Show foreign key ordering of a snapshot")
    graph_parser.add_argument("--snapshot", required=True, help="Path to snapshot JSON")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(verbose=args.verbose)
    load_environment()

    if args.command == "capture":
        return cmd_capture(args)
    elif args.command == "diff":
        return cmd_diff(args)
    elif args.command == "render":
        return cmd_render(args)
    elif args.command == "replay":
        return cmd_replay(args)
    elif args.command == "graph":
        return cmd_graph(args)
    else:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
