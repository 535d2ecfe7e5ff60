"""
CLI (Command Line Interface).

This module drives the engine from a terminal, e.g.:

    classtable import "<WakeUp share message>" --user 10001 --group 42 --name Alice
    classtable now --user 10001
    classtable today --user 10001
    classtable skip --user 10001
    classtable unskip --user 10001
    classtable group 42 --limit 10
    classtable members 42

Every query accepts --at "YYYY-MM-DD HH:MM" to look at another moment.
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from typing import List

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from classtable.config import load_settings
from classtable.errors import ClassTableError, ImportFetchError, ScheduleNotFound
from classtable.model import DisplayRow, QueryResult
from classtable.service import ClassTable

console = Console()

NAME_WIDTH = 14
COURSE_WIDTH = 9


def _shorten(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width] + "···"


def _parse_at(value: str | None) -> datetime:
    if not value:
        return datetime.now()
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d %H:%M")
    except ValueError:
        raise argparse.ArgumentTypeError(f"--at must look like 'YYYY-MM-DD HH:MM', got {value!r}") from None


def _describe(result: QueryResult) -> str:
    if result.status == "ongoing":
        head = f"In class: {result.course_name} ({result.start_time}-{result.end_time})"
    elif result.status == "next":
        head = f"Next: {result.course_name} ({result.start_time}-{result.end_time})"
    else:
        return f"No more classes today (week {result.week})."
    bits = [head]
    if result.room:
        bits.append(f"@ {result.room}")
    if result.teacher:
        bits.append(f"with {result.teacher}")
    bits.append(f"[week {result.week}]")
    return " ".join(bits)


def _cmd_import(args: argparse.Namespace, app: ClassTable) -> int:
    text = (args.text or "").strip()
    if not text:
        console.print("Please provide the share message or share code.")
        return 1
    try:
        schedule = app.import_share(text, args.user, group_id=args.group, user_name=args.name)
    except ImportFetchError as exc:
        console.print(str(exc), markup=False)
        if exc.response is not None:
            console.print(f"Upstream response: {json.dumps(exc.response, ensure_ascii=False)}", markup=False)
        return 1
    console.print(
        f"Imported {len(schedule.weeks)} weeks (term starts {schedule.start_date}, "
        f"{schedule.max_week} weeks). Importing again overwrites this timetable."
    )
    return 0


def _cmd_now(args: argparse.Namespace, app: ClassTable) -> int:
    console.print(_describe(app.status(args.user, _parse_at(args.at))), markup=False)
    return 0


def _cmd_today(args: argparse.Namespace, app: ClassTable) -> int:
    console.print(app.today(args.user, _parse_at(args.at)), markup=False)
    return 0


def _cmd_skip(args: argparse.Namespace, app: ClassTable) -> int:
    result = app.skip(args.user, _parse_at(args.at))
    if result is None:
        console.print("Nothing left to skip today.")
        return 0
    console.print(f"Skipping {result.course_name} until {result.end_time}.", markup=False)
    return 0


def _cmd_unskip(args: argparse.Namespace, app: ClassTable) -> int:
    if app.cancel_skip(args.user):
        console.print("Skip cancelled.")
    else:
        console.print("You were not skipping anything.")
    return 0


def _rows_table(rows: List[DisplayRow]) -> Table:
    table = Table(title="Who is in class", box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Member")
    table.add_column("State")
    table.add_column("Class")
    table.add_column("Time")
    table.add_column("Min", justify="right")

    for i, row in enumerate(rows, start=1):
        time_span = f"{row.start_time}-{row.end_time}" if row.has_class else ""
        minutes = "" if row.minutes_remaining is None else str(row.minutes_remaining)
        table.add_row(
            str(i),
            Text(_shorten(row.user_name, NAME_WIDTH)),
            row.state_label,
            Text(_shorten(row.course_name or "", COURSE_WIDTH)),
            time_span,
            minutes,
        )
    return table


def _cmd_group(args: argparse.Namespace, app: ClassTable) -> int:
    if args.limit is not None and args.limit < 0:
        console.print("--limit must not be negative.")
        return 1
    rows = app.group_rows(str(args.group_id), _parse_at(args.at), limit=args.limit)
    if args.json:
        console.print_json(data=[row.to_dict() for row in rows])
    else:
        console.print(_rows_table(rows))
    return 0


def _cmd_members(args: argparse.Namespace, app: ClassTable) -> int:
    group_id = str(args.group_id)
    members = sorted(app.groups.list_members(group_id))
    if not members:
        console.print("No members registered.")
        return 0
    names = app.groups.display_names(group_id)
    for uid in members:
        mark = "" if app.schedules.exists(uid) else " (no timetable)"
        console.print(f"{uid} | {names.get(uid, '')}{mark}", markup=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="classtable", description="WakeUp timetable CLI")
    parser.add_argument("--data-dir", type=str, default=None, help="Data directory (default: CLASSTABLE_DATA_DIR)")
    parser.add_argument("--no-cache", action="store_true", help="Disable the group result cache")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import a timetable from a WakeUp share message or code")
    p_import.add_argument("text", type=str, help="Share message or share code")
    p_import.add_argument("--user", required=True, help="User id")
    p_import.add_argument("--group", default=None, help="Group id to register the user in")
    p_import.add_argument("--name", default=None, help="Display name in the group")

    for name, help_text in (
        ("now", "Show the current or next class"),
        ("today", "List today's classes"),
        ("skip", "Skip the current or next class"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--user", required=True, help="User id")
        p.add_argument("--at", default=None, help="Moment to query, 'YYYY-MM-DD HH:MM'")

    p_unskip = sub.add_parser("unskip", help="Cancel skipping")
    p_unskip.add_argument("--user", required=True, help="User id")

    p_group = sub.add_parser("group", help="Who in the group is in class")
    p_group.add_argument("group_id", type=str, help="Group id")
    p_group.add_argument("--limit", type=int, default=None, help="Show at most N members")
    p_group.add_argument("--at", default=None, help="Moment to query, 'YYYY-MM-DD HH:MM'")
    p_group.add_argument("--json", action="store_true", help="Print rows as JSON")

    p_members = sub.add_parser("members", help="List registered group members")
    p_members.add_argument("group_id", type=str, help="Group id")

    return parser


COMMANDS = {
    "import": _cmd_import,
    "now": _cmd_now,
    "today": _cmd_today,
    "skip": _cmd_skip,
    "unskip": _cmd_unskip,
    "group": _cmd_group,
    "members": _cmd_members,
}


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        raise SystemExit(2)
    try:
        app = ClassTable.from_settings(load_settings(args.data_dir), use_cache=not args.no_cache)
        raise SystemExit(handler(args, app))
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except ScheduleNotFound:
        console.print("No timetable imported yet. Send your WakeUp share message first.")
        raise SystemExit(1)
    except ClassTableError as exc:
        console.print(f"Error: {exc}", markup=False)
        raise SystemExit(1)
