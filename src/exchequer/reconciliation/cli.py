#!/usr/bin/env python3
"""Command-line interface for event replay.

Re-applies the provider's events for a time window, the recovery path for
webhook deliveries that were lost or failed to apply.

Usage:
    exchequer-reconcile replay --start 2024-01-01 --end 2024-01-31
    exchequer-reconcile replay --start 2024-01-01T00:00:00 --end 2024-01-01T12:00:00 --dry-run --output replay.json
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from ..config import Settings, configure_logging
from ..connectors import build_connector
from ..connectors.base import ConnectorBase
from ..database import DatabaseManager
from ..errors import ProviderError
from .models import ReplayReport
from .service import ReconciliationService

logger = logging.getLogger(__name__)


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def format_report(report: ReplayReport, output_format: str = "json") -> str:
    """Render a replay report as JSON or as a short text summary."""
    if output_format == "json":
        return json.dumps(report.to_full_dict(), indent=2)

    lines = [
        f"Replay of {report.provider} events",
        f"Window: {report.start_time.isoformat()} to {report.end_time.isoformat()}",
        f"Dry run: {'yes' if report.dry_run else 'no'}",
        f"Events: {report.total_events}",
    ]
    for status, count in report.counts().items():
        lines.append(f"  {status}: {count}")
    for outcome in report.outcomes:
        if outcome.message:
            lines.append(f"{outcome.event_id} {outcome.event_type} {outcome.status.value}: {outcome.message}")
    return "\n".join(lines)


async def run_replay_async(
    start_time: datetime,
    end_time: datetime,
    dry_run: bool = False,
    output_file: Optional[str] = None,
    output_format: str = "json",
    settings: Optional[Settings] = None,
    connector: Optional[ConnectorBase] = None,
    database: Optional[DatabaseManager] = None,
) -> int:
    """Run a replay against the configured provider and database.

    Returns:
        Exit code: 0 if every event applied cleanly, 1 if any failed,
        2 if the replay could not run.
    """
    settings = settings or Settings.from_env()
    connector = connector or build_connector(settings)
    database = database or DatabaseManager(settings.database_url)
    await database.initialize()

    try:
        async with database.session() as session:
            service = ReconciliationService(session, connector)
            try:
                report = await service.replay_events(start_time, end_time, dry_run=dry_run)
            except (ProviderError, ValueError) as e:
                logger.error(f"Replay failed: {e}")
                return 2
    finally:
        await database.shutdown()

    output = format_report(report, output_format)
    if output_file:
        with open(output_file, "w") as f:
            f.write(output)
        logger.info(f"Report written to {output_file}")
    else:
        print(output)

    failed = report.counts()["failed"]
    if failed:
        logger.warning(f"Replay completed with {failed} failed events")
        return 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="exchequer-reconcile",
        description="Re-apply payment provider events to local records.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    replay_parser = subparsers.add_parser(
        "replay",
        help="Replay provider events for a time window",
    )
    replay_parser.add_argument(
        "--start", "-s",
        required=True,
        help="Start date/time, UTC (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    replay_parser.add_argument(
        "--end", "-e",
        required=True,
        help="End date/time, UTC (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    replay_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Apply events but roll every write back",
    )
    replay_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    replay_parser.add_argument(
        "--format", "-f",
        choices=["json", "text"],
        default="json",
        help="Output format (default: json)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if parsed_args.command == "replay":
        try:
            start_time = parse_datetime(parsed_args.start)
            end_time = parse_datetime(parsed_args.end)

            # A bare end date covers that whole day
            if "T" not in parsed_args.end and " " not in parsed_args.end:
                end_time = end_time + timedelta(days=1) - timedelta(seconds=1)

        except ValueError as e:
            logger.error(str(e))
            return 1

        return asyncio.run(run_replay_async(
            start_time=start_time,
            end_time=end_time,
            dry_run=parsed_args.dry_run,
            output_file=parsed_args.output,
            output_format=parsed_args.format,
            settings=settings,
        ))

    return 0


if __name__ == "__main__":
    sys.exit(main())
