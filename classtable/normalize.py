"""
Normalization (WakeUp share payload -> canonical Schedule).

The share API returns one text blob of newline-separated JSON documents:

    line 0  table header                  (ignored)
    line 1  time table                    [{node, startTime, endTime}, ...]
    line 2  table settings                {maxWeek, startDate, ...}
    line 3  course catalog                [{id, courseName}, ...]
    line 4  arrangements                  [{id, startNode, step, day, startWeek,
                                            endWeek, teacher, room, type}, ...]

Rules:
- one arrangement expands into `step` periods starting at `startNode`
- it is placed in every week of [startWeek, endWeek] ∩ [1, maxWeek]
  that its recurrence type admits (0 every, 1 odd, 2 even)
- unknown period nodes get the "unknown" time sentinel
- unknown course ids get a placeholder name
- weeks without any class are dropped
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Tuple

from classtable.errors import ImportParseError
from classtable.model import (
    EVEN_WEEKS,
    ODD_WEEKS,
    UNKNOWN_COURSE,
    UNKNOWN_TIME,
    ClassOccurrence,
    Schedule,
    WeekMap,
)

logger = logging.getLogger(__name__)

SEGMENT_NAMES = ("time table", "settings", "course catalog", "arrangements")


@dataclass
class RawSegments:
    time_table: List[Dict[str, Any]]
    settings: Dict[str, Any]
    courses: List[Dict[str, Any]]
    arrangements: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def week_admitted(recurrence: int, week: int) -> bool:
    """
    Recurrence rule: odd-week entries only in odd weeks, even-week entries
    only in even weeks, everything else every week.
    """
    if recurrence == ODD_WEEKS:
        return week % 2 == 1
    if recurrence == EVEN_WEEKS:
        return week % 2 == 0
    return True


def split_payload(text: str) -> RawSegments:
    """
    Split the share blob into its four JSON segments.
    Raises ImportParseError if a segment is missing or not valid JSON.
    """
    if not isinstance(text, str):
        raise ImportParseError("Share payload must be text")

    lines = text.split("\n")
    if len(lines) < 5:
        raise ImportParseError(f"Share payload has {len(lines)} segments, expected at least 5")

    decoded: List[Any] = []
    for name, line in zip(SEGMENT_NAMES, lines[1:5]):
        try:
            decoded.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise ImportParseError(f"Cannot parse {name} segment: {exc}") from exc

    time_table, settings, courses, arrangements = decoded
    if not isinstance(time_table, list) or not isinstance(courses, list) or not isinstance(arrangements, list):
        raise ImportParseError("Time table, course catalog and arrangements must be JSON arrays")
    if not isinstance(settings, dict):
        raise ImportParseError("Settings segment must be a JSON object")

    return RawSegments(time_table=time_table, settings=settings, courses=courses, arrangements=arrangements)


def _settings_start_date(settings: Dict[str, Any], default: date) -> date:
    raw = str(settings.get("startDate") or "").strip()
    if not raw:
        return default
    try:
        # WakeUp writes dates without zero padding, e.g. "2025-9-1"
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        logger.debug("Ignoring unparsable startDate %r", raw)
        return default


def _settings_max_week(settings: Dict[str, Any], default: int) -> int:
    try:
        value = int(settings.get("maxWeek") or 0)
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default


def _expand_periods(
    start_node: int, step: int, node_times: Dict[int, Dict[str, Any]]
) -> List[Tuple[int, str, str]]:
    """
    Return (period, startTime, endTime) for the `step` periods from start_node.
    """
    out: List[Tuple[int, str, str]] = []
    for node in range(max(start_node, 1), start_node + step):
        info = node_times.get(node, {})
        out.append(
            (
                node,
                str(info.get("startTime") or UNKNOWN_TIME),
                str(info.get("endTime") or UNKNOWN_TIME),
            )
        )
    return out


def _valid_course_id(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def _int_field(item: Dict[str, Any], key: str, default: int | None = None) -> int:
    value = item.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ImportParseError(f"Arrangement field {key!r} is not an integer: {value!r}") from None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_segments(
    segments: RawSegments,
    default_start_date: date,
    default_max_week: int = 18,
) -> Schedule:
    """
    Build the canonical Schedule from decoded segments.
    """
    max_week = _settings_max_week(segments.settings, default_max_week)
    start_date = _settings_start_date(segments.settings, default_start_date)

    course_by_id: Dict[Any, Dict[str, Any]] = {}
    for course in segments.courses:
        if isinstance(course, dict) and _valid_course_id(course.get("id")):
            course_by_id[course["id"]] = course

    node_times: Dict[int, Dict[str, Any]] = {}
    for item in segments.time_table:
        if not isinstance(item, dict):
            continue
        try:
            node_times[int(item.get("node"))] = item
        except (TypeError, ValueError):
            continue

    weeks: WeekMap = {}
    for item in segments.arrangements:
        if not isinstance(item, dict):
            raise ImportParseError(f"Arrangement must be an object, got {item!r}")

        course_id = item.get("id")
        if not _valid_course_id(course_id):
            course_id = None
        course_name = str(course_by_id.get(course_id, {}).get("courseName") or UNKNOWN_COURSE)
        start_node = _int_field(item, "startNode")
        step = _int_field(item, "step", 1)
        day = _int_field(item, "day")
        start_week = _int_field(item, "startWeek")
        end_week = _int_field(item, "endWeek")
        recurrence = _int_field(item, "type", 0)

        if not 1 <= day <= 7:
            continue

        periods = _expand_periods(start_node, step, node_times)

        for week in range(max(start_week, 1), min(end_week, max_week) + 1):
            if not week_admitted(recurrence, week):
                continue
            day_map = weeks.setdefault(week, {}).setdefault(day, {})
            for period, start_time, end_time in periods:
                day_map.setdefault(period, []).append(
                    ClassOccurrence(
                        course_id=course_id,
                        course_name=course_name,
                        teacher=str(item.get("teacher") or ""),
                        room=str(item.get("room") or ""),
                        start_time=start_time,
                        end_time=end_time,
                        week=week,
                        start_week=start_week,
                        end_week=end_week,
                        type=recurrence,
                    )
                )

    # Only weeks that actually received a class were created above,
    # but a day may still be empty if step was 0
    cleaned: WeekMap = {}
    for week, days in weeks.items():
        kept = {d: periods for d, periods in days.items() if periods}
        if kept:
            cleaned[week] = kept

    return Schedule(start_date=start_date, max_week=max_week, weeks=cleaned)


def normalize_payload(
    text: str,
    default_start_date: date,
    default_max_week: int = 18,
) -> Schedule:
    """
    Parse a raw share blob and normalize it into a Schedule.
    """
    schedule = normalize_segments(split_payload(text), default_start_date, default_max_week)
    logger.debug(
        "Normalized payload: %d weeks, maxWeek=%d, startDate=%s",
        len(schedule.weeks),
        schedule.max_week,
        schedule.start_date,
    )
    return schedule
