"""Main entry point for Job Tracker Sync."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from src import __version__
from src.api.client import RemoteAPI
from src.config.settings import Settings
from src.store import create_store
from src.sync.engine import SyncEngine
from src.sync.errors import NetworkError, NotFoundError, ValidationError
from src.sync.models import ConnectivityState, Record, RecordType
from src.utils.logging import configure_logging

RECORD_TYPES = [record_type.value for record_type in RecordType]


def _key_value(value: str) -> tuple[str, str]:
    key, sep, item = value.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
    return key.strip(), item.strip()


def _load_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def _summary(record: Record) -> str:
    fields = record.fields
    if record.record_type == RecordType.APPLICATION:
        label = f"{fields.get('jobTitle', '?')} @ {fields.get('company', '?')}"
        if fields.get("status"):
            label += f" [{fields['status']}]"
    elif record.record_type == RecordType.CONTACT:
        label = str(fields.get("name", "?"))
        if fields.get("company"):
            label += f" ({fields['company']})"
    else:
        label = str(fields.get("name") or fields.get("version") or "?")
    sync_state = record.remote_id or "pending"
    return f"{record.id}  {sync_state}  {label}"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="job-tracker",
        description="Job Tracker Sync: local-first job application records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src add application jobTitle=Engineer company=Acme
  python -m src list application
  python -m src sync
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set the log level (overrides settings)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands",
    )

    subparsers.add_parser("health", help="Check whether the backend is reachable")

    list_parser = subparsers.add_parser("list", help="List records of one type")
    list_parser.add_argument("record_type", choices=RECORD_TYPES)
    list_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Fetch from the backend before listing",
    )
    list_parser.add_argument("--json", action="store_true", help="Print JSON")

    add_parser = subparsers.add_parser("add", help="Create a record")
    add_parser.add_argument("record_type", choices=RECORD_TYPES)
    add_parser.add_argument("fields", nargs="+", type=_key_value, metavar="key=value")
    add_parser.add_argument(
        "--force",
        action="store_true",
        help="Add an application even if a similar one already exists",
    )

    update_parser = subparsers.add_parser("update", help="Update a record")
    update_parser.add_argument("record_type", choices=RECORD_TYPES)
    update_parser.add_argument("id")
    update_parser.add_argument("fields", nargs="+", type=_key_value, metavar="key=value")

    delete_parser = subparsers.add_parser("delete", help="Delete a record")
    delete_parser.add_argument("record_type", choices=RECORD_TYPES)
    delete_parser.add_argument("id")

    subparsers.add_parser("sync", help="Replay writes queued while offline")
    subparsers.add_parser("pending", help="Show writes queued while offline")
    subparsers.add_parser("push", help="Bulk-upload every local record")

    import_parser = subparsers.add_parser(
        "import", help="Import records exported by the browser extension"
    )
    import_parser.add_argument("record_type", choices=RECORD_TYPES)
    import_parser.add_argument("file", type=Path, help="JSON file holding a list of records")

    return parser


def build_engine(settings: Settings) -> SyncEngine:
    """Wire the configured store and API client into an engine."""
    return SyncEngine(RemoteAPI.from_settings(settings), create_store(settings))


async def _run(parsed: argparse.Namespace, settings: Settings) -> int:
    engine = build_engine(settings)
    try:
        await engine.initialize()
        return await _dispatch(engine, parsed)
    finally:
        await engine.wait_idle()
        await engine.close()


async def _dispatch(engine: SyncEngine, parsed: argparse.Namespace) -> int:
    command = parsed.command

    if command == "health":
        print(f"Backend: {engine.state.value}")
        return 0 if await engine.check_health() else 1

    if command == "list":
        if parsed.refresh and engine.state == ConnectivityState.ONLINE:
            records = await engine.refresh(parsed.record_type)
        else:
            records = engine.cache.list(RecordType(parsed.record_type))
        if parsed.json:
            print(json.dumps([record.to_dict() for record in records], indent=2))
        else:
            for record in records:
                print(_summary(record))
            print(f"{len(records)} {parsed.record_type}(s)")
        return 0

    if command == "add":
        fields = dict(parsed.fields)
        if parsed.record_type == RecordType.APPLICATION.value and not parsed.force:
            duplicate = engine.find_duplicate(fields)
            if duplicate is not None:
                print(
                    f"Error: similar application already exists: {_summary(duplicate)} "
                    "(use --force to add anyway)",
                    file=sys.stderr,
                )
                return 1
        record = await engine.create(parsed.record_type, fields)
        print(_summary(record))
        if record.remote_id is None:
            print("Saved locally, will sync later")
        return 0

    if command == "update":
        record = await engine.update(parsed.record_type, parsed.id, dict(parsed.fields))
        print(_summary(record))
        return 0

    if command == "delete":
        await engine.delete(parsed.record_type, parsed.id)
        print(f"Deleted {parsed.id}")
        return 0

    if command == "sync":
        summary = await engine.replay_pending()
        print(
            f"Replayed: succeeded={summary.succeeded} failed={summary.failed} "
            f"remaining={summary.remaining}"
        )
        return 0 if summary.failed == 0 else 1

    if command == "pending":
        operations = engine.pending()
        for op in operations:
            print(
                f"{op.enqueued_at.isoformat()}  {op.kind.value:<6}  "
                f"{op.record_type.value:<11}  {op.local_id}"
            )
        print(f"{len(operations)} pending operation(s)")
        return 0

    if command == "push":
        result = await engine.push_all()
        print(f"Bulk sync complete: {result.get('message', 'ok')}")
        return 0

    if command == "import":
        if not parsed.file.exists():
            print(f"Error: file not found: {parsed.file}", file=sys.stderr)
            return 1
        items = _load_json(parsed.file)
        if not isinstance(items, list):
            print("Error: import file must contain a JSON list", file=sys.stderr)
            return 1
        created = await engine.import_records(
            parsed.record_type, [item for item in items if isinstance(item, dict)]
        )
        print(f"Imported {len(created)} {parsed.record_type}(s)")
        return 0

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    settings = Settings()
    configure_logging(level=parsed.log_level or settings.log_level)

    if parsed.command is None:
        parser.print_help()
        return 0

    try:
        return asyncio.run(_run(parsed, settings))
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error: rejected by server: {e}", file=sys.stderr)
        return 1
    except NetworkError as e:
        print(f"Error: backend unreachable: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
