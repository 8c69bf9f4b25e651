#!/usr/bin/env python3
"""
Main entry point for Phone Archive.

Provides a command-line interface for ingestion, sync and maintenance.
"""
from typing import List, Optional
import argparse
import sys
import logging
from pathlib import Path

from phone_archive.config import get_config
from phone_archive.database import open_store
from phone_archive.etl.extractors import ArchiveFormatError
from phone_archive.etl.loaders import discover_subscriptions, rebuild_phone_stats
from phone_archive.etl.pipeline import get_etl_status, ingest_archive
from phone_archive.etl.validation import validate_archive
from phone_archive.logger_config import setup_logging
from phone_archive.queries import get_activity_timestamps, get_phones
from phone_archive.sync import sync_from_drive
from phone_archive.utils import Colors, format_count, format_timestamp
from phone_archive.visualization import plot_activity_over_time, plot_top_phones

logger = logging.getLogger(__name__)


def print_section(title: str) -> None:
    """Print a formatted section title."""
    print(f"\n{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{title}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}\n")


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest and query phone backup archives.")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to archive.db (defaults to $PHONE_ARCHIVE_DB_PATH or ~/.phone_archive/archive.db).",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (defaults to $PHONE_ARCHIVE_LOG_FILE).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest one or more XML archives.")
    ingest.add_argument("files", nargs="+", type=Path, help="Messages or calls XML exports.")

    subparsers.add_parser("sync", help="Ingest the newest archive from the remote folder.")
    subparsers.add_parser("discover", help="Register subscription ids found in the data.")
    subparsers.add_parser("rebuild-stats", help="Rebuild every phone aggregate from scratch.")
    subparsers.add_parser("status", help="Show record counts and last ingestion.")
    subparsers.add_parser("validate", help="Check aggregates and subscriptions for consistency.")

    chart = subparsers.add_parser("chart", help="Write an HTML chart of the most active phones.")
    chart.add_argument("--output", default="phones.html", help="Output HTML file (default: phones.html).")
    chart.add_argument("--limit", type=int, default=20, help="Number of phones (default: 20).")
    chart.add_argument(
        "--activity-output",
        default=None,
        help="Also write a records-per-day chart to this HTML file.",
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def cmd_ingest(files: List[Path]) -> int:
    config = get_config()
    failures = 0

    with open_store(config.db_path) as store:
        for path in files:
            print_section(f"Ingesting {path.name}")
            try:
                result = ingest_archive(
                    store,
                    path.read_bytes(),
                    source=path.name,
                    insert_batch_size=config.insert_batch_size,
                    stats_batch_size=config.stats_batch_size,
                )
            except (OSError, ArchiveFormatError) as e:
                print(f"{Colors.FAIL}Error: {e}{Colors.ENDC}")
                failures += 1
                continue
            print(result)

    return 1 if failures else 0


def cmd_sync() -> int:
    config = get_config()
    with open_store(config.db_path) as store:
        result = sync_from_drive(store, config)

    if not result.success:
        print(f"{Colors.FAIL}Sync failed: {result.error}{Colors.ENDC}")
        return 1

    if result.file_name is None:
        print("No archives found in remote folder.")
    else:
        print(
            f"{Colors.OKGREEN}Synced {result.file_name}: {result.inserted} inserted, "
            f"{result.skipped} skipped ({result.total} total){Colors.ENDC}"
        )
    return 0


def cmd_discover() -> int:
    with open_store(get_config().db_path) as store:
        discovered = discover_subscriptions(store)
    print(f"Subscriptions found: {len(discovered)}")
    for subscription_id in discovered:
        print(f"  - {subscription_id}")
    return 0


def cmd_rebuild_stats() -> int:
    with open_store(get_config().db_path) as store:
        count = rebuild_phone_stats(store)
    print(f"{Colors.OKGREEN}Rebuilt aggregates for {count} phones{Colors.ENDC}")
    return 0


def cmd_status() -> int:
    config = get_config()
    status = get_etl_status(config.db_path)

    print_section("Archive Status")
    print(f"Database: {config.db_path_str}")
    if not status["exists"]:
        print(f"{Colors.WARNING}archive.db not found. Run 'ingest' first.{Colors.ENDC}")
        return 1
    if not status["schema_valid"]:
        print(f"{Colors.FAIL}Schema invalid or incomplete.{Colors.ENDC}")
        return 1

    print(f"Schema version: {status['schema_version']}")
    print(f"Messages: {format_count(status['message_count'])}")
    print(f"Calls:    {format_count(status['call_count'])}")
    print(f"Phones:   {format_count(status['phone_count'])}")
    print(f"Latest message: {format_timestamp(status['latest_message_at'])}")
    print(f"Latest call:    {format_timestamp(status['latest_call_at'])}")
    print(f"Last sync: {status['last_sync'] or 'never'}")
    return 0


def cmd_validate() -> int:
    result = validate_archive(get_config().db_path)
    print_section("Validation")
    print(result)
    return 0 if result.passed else 1


def cmd_chart(output: str, limit: int, activity_output: Optional[str] = None) -> int:
    with open_store(get_config().db_path) as store:
        phones = get_phones(store, limit=limit)
        timestamps = get_activity_timestamps(store) if activity_output else []

    if not phones:
        print(f"{Colors.WARNING}No phones to chart.{Colors.ENDC}")
        return 1

    plot_top_phones(phones, output_file=output)
    print(f"{Colors.OKGREEN}Chart written to {output}{Colors.ENDC}")
    if activity_output:
        plot_activity_over_time(timestamps, output_file=activity_output)
        print(f"{Colors.OKGREEN}Activity chart written to {activity_output}{Colors.ENDC}")
    return 0


def cmd_serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("phone_archive.api:app", host=host, port=port)
    return 0


def main(argv: Optional[List[str]] = None):
    """Main function."""
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    setup_logging(log_file=args.log_file)
    get_config(db_path=args.db_path)

    try:
        if args.command == "ingest":
            code = cmd_ingest(args.files)
        elif args.command == "sync":
            code = cmd_sync()
        elif args.command == "discover":
            code = cmd_discover()
        elif args.command == "rebuild-stats":
            code = cmd_rebuild_stats()
        elif args.command == "status":
            code = cmd_status()
        elif args.command == "validate":
            code = cmd_validate()
        elif args.command == "chart":
            code = cmd_chart(args.output, args.limit, args.activity_output)
        else:
            code = cmd_serve(args.host, args.port)
    except Exception as e:
        print(f"{Colors.FAIL}Error: {e}{Colors.ENDC}")
        logger.exception("Error during execution")
        sys.exit(1)

    sys.exit(code)


if __name__ == '__main__':
    main()
