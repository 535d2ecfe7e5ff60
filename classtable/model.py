"""
Central data model definitions used across the project.

The canonical per-user document is a sparse nested map:

    week (1..max_week) -> day (1=Monday..7=Sunday) -> period (>= 1) -> [ClassOccurrence]

On disk it is stored as JSON with camelCase field names. Those names and the
nesting are a stable contract: other tooling may read the files directly.

Document versions:
- version 1 (legacy): either the bare weekly map at the top level, or
  {"schedule": ..., "startDate": ..., "maxWeek": ...} without a version key
- version 2 (current): {"version": 2, "startDate", "maxWeek", "schedule"}

migrate_document() upgrades any legacy shape once, at load time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from classtable.errors import ScheduleFormatError


DOCUMENT_VERSION = 2

UNKNOWN_TIME = "unknown"
UNKNOWN_COURSE = "Unknown course"

# Recurrence types of a WakeUp arrangement
EVERY_WEEK = 0
ODD_WEEKS = 1
EVEN_WEEKS = 2

# QueryResult.status values
ONGOING = "ongoing"
NEXT = "next"
NONE_TODAY = "noneToday"


@dataclass
class ClassOccurrence:
    """
    One timetable period of one course in one concrete week.
    """

    course_id: Any
    course_name: str
    teacher: str
    room: str
    start_time: str
    end_time: str
    week: int
    start_week: int
    end_week: int
    type: int = EVERY_WEEK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "courseId": self.course_id,
            "courseName": self.course_name,
            "teacher": self.teacher,
            "room": self.room,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "week": self.week,
            "startWeek": self.start_week,
            "endWeek": self.end_week,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], week: int) -> "ClassOccurrence":
        # Legacy documents have neither "room" nor "type"
        return cls(
            course_id=data.get("courseId"),
            course_name=str(data.get("courseName") or UNKNOWN_COURSE),
            teacher=str(data.get("teacher") or ""),
            room=str(data.get("room") or ""),
            start_time=str(data.get("startTime") or UNKNOWN_TIME),
            end_time=str(data.get("endTime") or UNKNOWN_TIME),
            week=int(data.get("week", week)),
            start_week=int(data.get("startWeek", week)),
            end_week=int(data.get("endWeek", week)),
            type=int(data.get("type") or EVERY_WEEK),
        )


PeriodMap = Dict[int, List[ClassOccurrence]]
DayMap = Dict[int, PeriodMap]
WeekMap = Dict[int, DayMap]


@dataclass
class Schedule:
    """
    The canonical schedule of one user. Overwritten wholesale on re-import.
    """

    start_date: date
    max_week: int
    weeks: WeekMap = field(default_factory=dict)

    def day(self, week: int, day: int) -> PeriodMap:
        return self.weeks.get(week, {}).get(day, {})

    def to_document(self) -> Dict[str, Any]:
        schedule: Dict[str, Any] = {}
        for week in sorted(self.weeks):
            days: Dict[str, Any] = {}
            for day in sorted(self.weeks[week]):
                periods = self.weeks[week][day]
                days[str(day)] = {
                    str(period): [occ.to_dict() for occ in periods[period]] for period in sorted(periods)
                }
            schedule[str(week)] = days
        return {
            "version": DOCUMENT_VERSION,
            "startDate": self.start_date.isoformat(),
            "maxWeek": self.max_week,
            "schedule": schedule,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Schedule":
        """
        Build a Schedule from a version-2 document, validating key domains.
        Run migrate_document() first for anything read from disk.
        """
        try:
            start_date = _parse_date(doc["startDate"])
            max_week = int(doc["maxWeek"])
            raw_weeks = doc["schedule"]
        except (KeyError, TypeError, ValueError) as exc:
            raise ScheduleFormatError(f"Invalid schedule document: {exc}") from exc
        if max_week < 1:
            raise ScheduleFormatError(f"maxWeek must be >= 1, got {max_week}")
        if not isinstance(raw_weeks, dict):
            raise ScheduleFormatError("'schedule' must be an object")

        weeks: WeekMap = {}
        try:
            for week_key, raw_days in raw_weeks.items():
                week = _int_key(week_key, "week", 1, max_week)
                days: DayMap = {}
                for day_key, raw_periods in raw_days.items():
                    day = _int_key(day_key, "day", 1, 7)
                    periods: PeriodMap = {}
                    for period_key, raw_list in raw_periods.items():
                        period = _int_key(period_key, "period", 1, None)
                        occurrences = [ClassOccurrence.from_dict(item, week) for item in raw_list]
                        if occurrences:
                            periods[period] = occurrences
                    if periods:
                        days[day] = periods
                if days:
                    weeks[week] = days
        except (AttributeError, TypeError, ValueError) as exc:
            raise ScheduleFormatError(f"Invalid schedule document: {exc}") from exc

        return cls(start_date=start_date, max_week=max_week, weeks=weeks)


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


def _int_key(key: Any, what: str, low: int, high: Optional[int]) -> int:
    n = int(key)
    if n < low or (high is not None and n > high):
        raise ValueError(f"{what} {key!r} out of range")
    return n


def _looks_like_week_map(doc: Dict[str, Any]) -> bool:
    return all(str(k).strip().isdigit() for k in doc)


def migrate_document(raw: Any, default_start_date: date, default_max_week: int) -> Dict[str, Any]:
    """
    Upgrade any stored shape to a version-2 document.

    Missing startDate/maxWeek fall back to the given defaults; a bare
    legacy map gets a maxWeek of at least its highest week.
    """
    if not isinstance(raw, dict):
        raise ScheduleFormatError("Schedule document must be a JSON object")

    version = raw.get("version")
    if version == DOCUMENT_VERSION:
        return raw
    if version is not None:
        raise ScheduleFormatError(f"Unsupported schedule document version: {version!r}")

    if isinstance(raw.get("schedule"), dict):
        weeks = raw["schedule"]
        start = raw.get("startDate") or default_start_date.isoformat()
        max_week = raw.get("maxWeek") or default_max_week
    elif _looks_like_week_map(raw):
        weeks = raw
        start = default_start_date.isoformat()
        max_week = default_max_week
    else:
        raise ScheduleFormatError("Unrecognised schedule document layout")

    try:
        highest = max((int(k) for k in weeks), default=0)
        max_week = max(int(max_week), highest)
    except (TypeError, ValueError) as exc:
        raise ScheduleFormatError(f"Invalid legacy schedule document: {exc}") from exc

    return {
        "version": DOCUMENT_VERSION,
        "startDate": start,
        "maxWeek": max_week,
        "schedule": weeks,
    }


@dataclass
class QueryResult:
    """
    Answer to "what is this user doing right now". Never persisted.
    """

    status: str
    course_name: Optional[str] = None
    teacher: Optional[str] = None
    room: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    week: Optional[int] = None

    @property
    def has_class(self) -> bool:
        return self.status in (ONGOING, NEXT)


@dataclass
class DisplayRow:
    """
    One line of the group overview, as handed to the presentation layer.
    """

    user_id: str
    user_name: str
    avatar_url: str
    has_class: bool
    state: str
    state_label: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    course_name: Optional[str] = None
    minutes_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "avatarUrl": self.avatar_url,
            "hasClass": self.has_class,
            "state": self.state,
            "stateLabel": self.state_label,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "courseName": self.course_name,
            "minutesRemaining": self.minutes_remaining,
        }
