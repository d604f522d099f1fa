"""Command-line entry point for the standup engine.

Usage:
    python -m src.cli connect --user alice --token ghp_xxx
    python -m src.cli generate --user alice [--date 2024-01-03] [--tone casual] [--length short]
    python -m src.cli regenerate --user alice --id <standup-id>
    python -m src.cli list --user alice [--limit 10] [--offset 0]
    python -m src.cli show --user alice (--id <standup-id> | --date 2024-01-03)
    python -m src.cli delete --user alice --id <standup-id>
    python -m src.cli schedule
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, date, datetime

from src.config import get_settings
from src.credentials.models import GITHUB
from src.errors import StandupError
from src.ledger.models import StandupRecord
from src.orchestrator import Orchestrator, build_orchestrator
from src.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        msg = f"Invalid date {value!r}; expected YYYY-MM-DD"
        raise argparse.ArgumentTypeError(msg) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="standup", description="Daily standup generation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command", required=True)

    connect = sub.add_parser("connect", help="Store a GitHub credential for a user")
    connect.add_argument("--user", required=True)
    connect.add_argument("--token", default="", help="Personal access token")
    connect.add_argument("--installation-id", type=int, help="GitHub App installation id")
    connect.add_argument("--username", help="GitHub login, if already known")

    gen = sub.add_parser("generate", help="Generate (or replace) the standup for a day")
    gen.add_argument("--user", required=True)
    gen.add_argument("--date", type=_parse_date, help="Standup day (default: today, UTC)")
    gen.add_argument("--tone")
    gen.add_argument("--length", choices=["short", "medium", "long"])
    gen.add_argument("--custom-prompt")
    gen.add_argument("--sprint-goal")

    regen = sub.add_parser("regenerate", help="Regenerate a standup from its stored activity")
    regen.add_argument("--user", required=True)
    regen.add_argument("--id", required=True, dest="standup_id")
    regen.add_argument("--tone")
    regen.add_argument("--length", choices=["short", "medium", "long"])
    regen.add_argument("--custom-prompt")
    regen.add_argument("--sprint-goal")

    lst = sub.add_parser("list", help="List standups, newest first")
    lst.add_argument("--user", required=True)
    lst.add_argument("--limit", type=int, default=30)
    lst.add_argument("--offset", type=int, default=0)

    show = sub.add_parser("show", help="Show one standup")
    show.add_argument("--user", required=True)
    which = show.add_mutually_exclusive_group(required=True)
    which.add_argument("--id", dest="standup_id")
    which.add_argument("--date", type=_parse_date)

    delete = sub.add_parser("delete", help="Delete a standup")
    delete.add_argument("--user", required=True)
    delete.add_argument("--id", required=True, dest="standup_id")

    sub.add_parser("schedule", help="Run the daily generation scheduler until interrupted")
    return parser


def _print_record(record: StandupRecord) -> None:
    meta = record["generation_metadata"]
    print(f"[{record['date']}] id={record['id']} source={meta['source']} replaced={record['replaced_count']}")
    print(record["content"])
    print()


async def _run(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if args.command == "connect":
        metadata: dict[str, object] = {}
        if args.installation_id is not None:
            metadata["installation_id"] = args.installation_id
        if args.username:
            metadata["username"] = args.username
        if not args.token and not metadata.get("installation_id"):
            print("Either --token or --installation-id is required", file=sys.stderr)
            return 2
        await orchestrator.credentials.connect(args.user, GITHUB, access_token=args.token, metadata=metadata)
        print(f"Connected GitHub for {args.user}")
        return 0

    if args.command == "generate":
        record = await orchestrator.generate(
            args.user,
            args.date or datetime.now(UTC).date(),
            tone=args.tone,
            length=args.length,
            custom_prompt=args.custom_prompt,
            sprint_goal=args.sprint_goal,
        )
        _print_record(record)
    elif args.command == "regenerate":
        record = await orchestrator.regenerate(
            args.user,
            args.standup_id,
            tone=args.tone,
            length=args.length,
            custom_prompt=args.custom_prompt,
            sprint_goal=args.sprint_goal,
        )
        _print_record(record)
    elif args.command == "list":
        records = await orchestrator.list(args.user, limit=args.limit, offset=args.offset)
        if not records:
            print("No standups.")
        for record in records:
            _print_record(record)
    elif args.command == "show":
        if args.standup_id:
            record = await orchestrator.get(args.user, args.standup_id)
        else:
            found = await orchestrator.find_by_date(args.user, args.date)
            if found is None:
                print(f"No standup for {args.date.isoformat()}", file=sys.stderr)
                return 1
            record = found
        print(json.dumps(record, indent=2))
    elif args.command == "delete":
        await orchestrator.remove(args.user, args.standup_id)
        print(f"Deleted {args.standup_id}")
    elif args.command == "schedule":
        if not start_scheduler(orchestrator):
            print("STANDUP_SCHEDULE_CRON is not set", file=sys.stderr)
            return 1
        try:
            await asyncio.Event().wait()
        finally:
            stop_scheduler()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        orchestrator = build_orchestrator(get_settings())
    except Exception as e:
        print(f"Failed to build engine: {e}", file=sys.stderr)
        print("Check your .env file has a valid ENCRYPTION_KEY.", file=sys.stderr)
        return 1

    try:
        return asyncio.run(_run(args, orchestrator))
    except StandupError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
