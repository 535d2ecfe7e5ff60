"""
Group overview: "who is in class right now".

Every member's lookups run concurrently; the per-user results are then
turned into display rows and ranked:

    in class  <  skipping  <  about to start  <  free  <  not imported  <  error

Inside one state, rows with a start time come first (earliest first),
then everything else by name.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from classtable.errors import MalformedTimeError
from classtable.model import NEXT, ONGOING, DisplayRow, Schedule
from classtable.query import find_current_or_next
from classtable.timeutils import time_to_minutes

logger = logging.getLogger(__name__)

IN_CLASS = "in_class"
SKIPPING = "skipping"
ABOUT_TO_START = "about_to_start"
FREE = "free"
NOT_IMPORTED = "not_imported"
ERROR = "error"
NO_DATA = "no_data"

STATE_PRIORITY = {
    IN_CLASS: 0,
    SKIPPING: 1,
    ABOUT_TO_START: 2,
    FREE: 3,
    NOT_IMPORTED: 4,
    ERROR: 5,
    NO_DATA: 6,
}

STATE_LABELS = {
    IN_CLASS: "In class",
    SKIPPING: "Skipping",
    ABOUT_TO_START: "Starting soon",
    FREE: "Free",
    NOT_IMPORTED: "No timetable imported",
    ERROR: "Could not read timetable",
    NO_DATA: "Nobody in this group has imported a timetable yet",
}


@dataclass
class UserSnapshot:
    """
    Everything one user's lookups produced for a single group query.

    schedule is None when the user never imported one; error is set when
    reading their data failed.
    """

    user_id: str
    user_name: str
    avatar_url: str
    schedule: Optional[Schedule] = None
    skipping: bool = False
    error: Optional[str] = None


def _minutes_until(hhmm: Optional[str], now: datetime) -> Optional[int]:
    if not hhmm:
        return None
    try:
        return time_to_minutes(hhmm) - (now.hour * 60 + now.minute)
    except MalformedTimeError:
        return None


def _bare_row(snapshot: UserSnapshot, state: str) -> DisplayRow:
    return DisplayRow(
        user_id=snapshot.user_id,
        user_name=snapshot.user_name,
        avatar_url=snapshot.avatar_url,
        has_class=False,
        state=state,
        state_label=STATE_LABELS[state],
    )


def build_row(snapshot: UserSnapshot, now: datetime, max_gap_minutes: int = 30) -> DisplayRow:
    if snapshot.error is not None:
        return _bare_row(snapshot, ERROR)
    if snapshot.schedule is None:
        return _bare_row(snapshot, NOT_IMPORTED)

    try:
        result = find_current_or_next(snapshot.schedule, now, max_gap_minutes)
    except Exception as exc:  # one bad document must not sink the whole overview
        logger.warning("Query failed for user %s: %s", snapshot.user_id, exc)
        return _bare_row(snapshot, ERROR)

    if result.status not in (ONGOING, NEXT):
        return _bare_row(snapshot, FREE)

    if snapshot.skipping:
        state = SKIPPING
    elif result.status == ONGOING:
        state = IN_CLASS
    else:
        state = ABOUT_TO_START

    target = result.end_time if result.status == ONGOING else result.start_time
    return DisplayRow(
        user_id=snapshot.user_id,
        user_name=snapshot.user_name,
        avatar_url=snapshot.avatar_url,
        has_class=True,
        state=state,
        state_label=STATE_LABELS[state],
        start_time=result.start_time,
        end_time=result.end_time,
        course_name=result.course_name,
        minutes_remaining=_minutes_until(target, now),
    )


def _sort_key(row: DisplayRow):
    start = None
    if row.start_time:
        try:
            start = time_to_minutes(row.start_time)
        except MalformedTimeError:
            start = None
    return (
        STATE_PRIORITY.get(row.state, len(STATE_PRIORITY)),
        start is None,
        start if start is not None else 0,
        row.user_name,
    )


def rank_rows(rows: Iterable[DisplayRow], limit: Optional[int] = None) -> List[DisplayRow]:
    """
    Sort all rows, then keep the first `limit` (if positive).
    """
    ranked = sorted(rows, key=_sort_key)
    if limit is not None and limit > 0:
        ranked = ranked[:limit]
    return ranked


def rank_users(
    snapshots: Iterable[UserSnapshot],
    now: datetime,
    limit: Optional[int] = None,
    max_gap_minutes: int = 30,
) -> List[DisplayRow]:
    return rank_rows((build_row(s, now, max_gap_minutes) for s in snapshots), limit)


def no_data_row() -> DisplayRow:
    return DisplayRow(
        user_id="",
        user_name="No data",
        avatar_url="",
        has_class=False,
        state=NO_DATA,
        state_label=STATE_LABELS[NO_DATA],
    )


def collect_snapshots(
    user_ids: Iterable[str],
    load_one: Callable[[str], UserSnapshot],
    max_workers: int = 8,
) -> List[UserSnapshot]:
    """
    Run load_one for every user in parallel and wait for all of them.

    A load_one that raises yields an error snapshot for that user only.
    """
    ids = list(user_ids)
    if not ids:
        return []

    snapshots: List[UserSnapshot] = []
    with ThreadPoolExecutor(max_workers=min(len(ids), max_workers)) as executor:
        futures = [(uid, executor.submit(load_one, uid)) for uid in ids]
        for uid, fut in futures:
            try:
                snapshots.append(fut.result())
            except Exception as exc:  # isolate per-user failures
                logger.warning("Loading data for user %s failed: %s", uid, exc)
                snapshots.append(UserSnapshot(user_id=uid, user_name=f"User {uid}", avatar_url="", error=str(exc)))
    return snapshots
