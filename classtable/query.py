"""
Temporal queries against a canonical Schedule.

"now" is always passed in by the caller (naive local datetime); nothing in
this module reads the clock.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Tuple

from classtable.errors import MalformedTimeError
from classtable.model import NEXT, NONE_TODAY, ONGOING, ClassOccurrence, QueryResult, Schedule
from classtable.normalize import week_admitted
from classtable.timeutils import is_within, merge_consecutive, parse_time

logger = logging.getLogger(__name__)


def current_week(start_date: date, today: date) -> int:
    """
    Term week of `today` (week 1 starts at start_date). Never below 1.
    """
    delta_days = (today - start_date).days
    return max(delta_days // 7 + 1, 1)


def iso_day(moment: datetime) -> int:
    """
    Day number used by the schedule: Monday=1 .. Sunday=7.
    """
    return moment.isoweekday()


def todays_occurrences(schedule: Schedule, now: datetime) -> Tuple[int, List[Tuple[int, ClassOccurrence]]]:
    """
    Return (week, [(period, occurrence), ...]) for the day of `now`,
    sorted by period. Occurrences whose recurrence type rejects the
    week are left out.
    """
    week = current_week(schedule.start_date, now.date())
    periods = schedule.day(week, iso_day(now))

    flat: List[Tuple[int, ClassOccurrence]] = []
    for period, occurrences in periods.items():
        for occ in occurrences:
            if week_admitted(occ.type, week):
                flat.append((period, occ))

    # sorted() is stable: occurrences sharing a period keep their stored order
    flat.sort(key=lambda pair: pair[0])
    return week, flat


def _starts_after(occ: ClassOccurrence, hour: int, minute: int) -> bool:
    return parse_time(occ.start_time) > (hour, minute)


def _first_index(classes: List[ClassOccurrence], check: Callable[[ClassOccurrence], bool]) -> int:
    for i, occ in enumerate(classes):
        try:
            if check(occ):
                return i
        except MalformedTimeError:
            logger.debug("Skipping %s with malformed time %s-%s", occ.course_name, occ.start_time, occ.end_time)
    return -1


def find_current_or_next(schedule: Schedule, now: datetime, max_gap_minutes: int = 30) -> QueryResult:
    """
    The class running at `now`, otherwise the next one starting later today.

    Consecutive periods of the same course are reported as one block.
    Occurrences with malformed times can be neither current nor next.
    """
    week, flat = todays_occurrences(schedule, now)
    if not flat:
        return QueryResult(status=NONE_TODAY, week=week)

    classes = [occ for _, occ in flat]

    status = ONGOING
    index = _first_index(classes, lambda occ: is_within(occ.start_time, occ.end_time, now.hour, now.minute))
    if index < 0:
        status = NEXT
        index = _first_index(classes, lambda occ: _starts_after(occ, now.hour, now.minute))
    if index < 0:
        return QueryResult(status=NONE_TODAY, week=week)

    block = merge_consecutive(classes, index, max_gap_minutes)
    return QueryResult(
        status=status,
        course_name=block.occurrence.course_name,
        teacher=block.occurrence.teacher,
        room=block.occurrence.room,
        start_time=block.start_time,
        end_time=block.end_time,
        week=week,
    )


def format_today(schedule: Schedule, now: datetime) -> str:
    """
    Plain-text listing of today's classes in period order.
    """
    week, flat = todays_occurrences(schedule, now)
    if not flat:
        return "No classes today."

    lines = [f"Today's classes (week {week}, day {iso_day(now)}):"]
    for period, occ in flat:
        lines.append("====================")
        lines.append(f"Period {period}: {occ.course_name}")
        if occ.teacher:
            lines.append(f"Teacher: {occ.teacher}")
        if occ.room:
            lines.append(f"Room: {occ.room}")
        lines.append(f"Time: {occ.start_time}-{occ.end_time}")
    return "\n".join(lines)
