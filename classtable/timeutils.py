"""
Time-of-day helpers.

All values are local wall-clock 'HH:MM' strings; there is no date and no
wraparound past midnight.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from classtable.errors import MalformedTimeError
from classtable.model import ClassOccurrence


def parse_time(hhmm: str) -> Tuple[int, int]:
    """
    Convert 'HH:MM' to (hour, minute).
    Raises MalformedTimeError for invalid formats.
    """
    parts = str(hhmm).strip().split(":")
    if len(parts) != 2:
        raise MalformedTimeError(f"Invalid time format: {hhmm!r}")
    try:
        h = int(parts[0])
        m = int(parts[1])
    except ValueError:
        raise MalformedTimeError(f"Invalid time format: {hhmm!r}") from None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise MalformedTimeError(f"Invalid time value: {hhmm!r}")
    return h, m


def time_to_minutes(hhmm: str) -> int:
    h, m = parse_time(hhmm)
    return h * 60 + m


def interval_minutes(t1: str, t2: str) -> int:
    """
    Signed minutes from t1 to t2 (negative if t2 is earlier).
    """
    return time_to_minutes(t2) - time_to_minutes(t1)


def is_within(start: str, end: str, hour: int, minute: int) -> bool:
    # Half-open: in class at start, no longer in class at end
    return parse_time(start) <= (hour, minute) < parse_time(end)


@dataclass
class MergedBlock:
    """
    Consecutive periods of one course collapsed into a single block.

    `occurrence` is the last period that was merged in (it carries the
    room/teacher of the block's tail); start_time/end_time span the block.
    """

    occurrence: ClassOccurrence
    start_time: str
    end_time: str


def merge_consecutive(
    occurrences: Sequence[ClassOccurrence],
    start_index: int,
    max_gap_minutes: int = 30,
) -> MergedBlock:
    """
    Extend occurrences[start_index] forward over following periods of the
    same course whose gap to the running end time is <= max_gap_minutes.

    Stops at the first occurrence with a different name, a larger gap, or
    an unparsable time.
    """
    first = occurrences[start_index]
    last = first
    end_time = first.end_time

    for nxt in occurrences[start_index + 1 :]:
        if nxt.course_name != first.course_name:
            break
        try:
            gap = interval_minutes(end_time, nxt.start_time)
        except MalformedTimeError:
            break
        if gap > max_gap_minutes:
            break
        last = nxt
        end_time = nxt.end_time

    return MergedBlock(occurrence=last, start_time=first.start_time, end_time=end_time)
