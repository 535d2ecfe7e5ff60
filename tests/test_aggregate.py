"""
Tests for the group overview ranking.

Order of states: in class < skipping < about to start < free
< not imported < error. Within a state: earliest start first, rows
without a start time after that, ties by name.
"""

import threading
import unittest
from datetime import date, datetime

from classtable.aggregate import (
    ABOUT_TO_START,
    ERROR,
    FREE,
    IN_CLASS,
    NO_DATA,
    NOT_IMPORTED,
    SKIPPING,
    UserSnapshot,
    build_row,
    collect_snapshots,
    no_data_row,
    rank_rows,
    rank_users,
)
from classtable.model import ClassOccurrence, Schedule

START = date(2025, 9, 1)
NOW = datetime(2025, 9, 3, 9, 30)  # week 1, Wednesday


def schedule_at(*spans) -> Schedule:
    """One class per (name, start, end) on Wednesday of week 1."""
    periods = {}
    for i, (name, start, end) in enumerate(spans, start=1):
        periods[i] = [
            ClassOccurrence(
                course_id=i,
                course_name=name,
                teacher="",
                room="",
                start_time=start,
                end_time=end,
                week=1,
                start_week=1,
                end_week=16,
            )
        ]
    weeks = {1: {3: periods}} if periods else {}
    return Schedule(start_date=START, max_week=18, weeks=weeks)


def snap(name: str, schedule=None, skipping: bool = False, error=None) -> UserSnapshot:
    return UserSnapshot(
        user_id=name.lower(),
        user_name=name,
        avatar_url=f"https://example.invalid/{name}.png",
        schedule=schedule,
        skipping=skipping,
        error=error,
    )


class TestBuildRow(unittest.TestCase):
    def test_in_class(self) -> None:
        row = build_row(snap("A", schedule_at(("Algebra", "09:00", "10:00"))), NOW)
        self.assertEqual(row.state, IN_CLASS)
        self.assertTrue(row.has_class)
        self.assertEqual(row.course_name, "Algebra")
        self.assertEqual(row.minutes_remaining, 30)

    def test_about_to_start(self) -> None:
        row = build_row(snap("C", schedule_at(("Botany", "10:30", "11:15"))), NOW)
        self.assertEqual(row.state, ABOUT_TO_START)
        self.assertEqual(row.minutes_remaining, 60)

    def test_free(self) -> None:
        row = build_row(snap("B", schedule_at()), NOW)
        self.assertEqual(row.state, FREE)
        self.assertFalse(row.has_class)
        self.assertIsNone(row.start_time)

    def test_skip_flag_overrides_ongoing(self) -> None:
        row = build_row(snap("A", schedule_at(("Algebra", "09:00", "10:00")), skipping=True), NOW)
        self.assertEqual(row.state, SKIPPING)
        self.assertEqual(row.course_name, "Algebra")

    def test_skip_flag_ignored_when_free(self) -> None:
        row = build_row(snap("B", schedule_at(), skipping=True), NOW)
        self.assertEqual(row.state, FREE)

    def test_not_imported_and_error(self) -> None:
        self.assertEqual(build_row(snap("N"), NOW).state, NOT_IMPORTED)
        self.assertEqual(build_row(snap("E", error="corrupt"), NOW).state, ERROR)

    def test_row_dict_uses_presentation_names(self) -> None:
        data = build_row(snap("A", schedule_at(("Algebra", "09:00", "10:00"))), NOW).to_dict()
        self.assertEqual(data["userName"], "A")
        self.assertEqual(data["stateLabel"], "In class")
        self.assertEqual(data["startTime"], "09:00")


class TestRanking(unittest.TestCase):
    def setUp(self) -> None:
        self.snapshots = [
            snap("B", schedule_at()),
            snap("C", schedule_at(("Botany", "10:30", "11:15"))),
            snap("A", schedule_at(("Algebra", "09:00", "10:00"))),
        ]

    def test_in_class_then_about_to_start_then_free(self) -> None:
        rows = rank_users(self.snapshots, NOW)
        self.assertEqual([r.user_name for r in rows], ["A", "C", "B"])

    def test_limit_applies_after_full_sort(self) -> None:
        rows = rank_users(self.snapshots, NOW, limit=1)
        self.assertEqual([r.user_name for r in rows], ["A"])

    def test_non_positive_limit_keeps_everything(self) -> None:
        self.assertEqual(len(rank_users(self.snapshots, NOW, limit=0)), 3)
        self.assertEqual(len(rank_users(self.snapshots, NOW, limit=-2)), 3)

    def test_skipping_between_in_class_and_about_to_start(self) -> None:
        snapshots = self.snapshots + [snap("D", schedule_at(("Drawing", "08:00", "10:00")), skipping=True)]
        rows = rank_users(snapshots, NOW)
        self.assertEqual([r.user_name for r in rows], ["A", "D", "C", "B"])

    def test_start_time_then_name_inside_state(self) -> None:
        snapshots = [
            snap("Zed", schedule_at(("Math", "11:00", "11:45"))),
            snap("Amy", schedule_at(("Math", "11:00", "11:45"))),
            snap("Bob", schedule_at(("Math", "10:00", "10:45"))),
        ]
        rows = rank_users(snapshots, NOW)
        self.assertEqual([r.user_name for r in rows], ["Bob", "Amy", "Zed"])

    def test_unavailable_users_sort_last(self) -> None:
        snapshots = self.snapshots + [snap("Err", error="boom"), snap("Aaron")]
        rows = rank_users(snapshots, NOW)
        self.assertEqual([r.state for r in rows][-2:], [NOT_IMPORTED, ERROR])
        self.assertEqual(rows[-2].user_name, "Aaron")

    def test_rank_rows_is_plain_sort(self) -> None:
        rows = [build_row(s, NOW) for s in self.snapshots]
        self.assertEqual([r.user_name for r in rank_rows(rows)], ["A", "C", "B"])

    def test_no_data_row(self) -> None:
        row = no_data_row()
        self.assertEqual(row.state, NO_DATA)
        self.assertFalse(row.has_class)


class TestCollectSnapshots(unittest.TestCase):
    def test_failure_is_isolated(self) -> None:
        def load(uid: str) -> UserSnapshot:
            if uid == "bad":
                raise RuntimeError("disk on fire")
            return snap(uid.upper(), schedule_at())

        snapshots = collect_snapshots(["a", "bad", "c"], load)
        self.assertEqual([s.user_id for s in snapshots], ["a", "bad", "c"])
        self.assertIsNone(snapshots[0].error)
        self.assertIn("disk on fire", snapshots[1].error)

        rows = rank_users(snapshots, NOW)
        self.assertEqual(rows[-1].state, ERROR)

    def test_lookups_run_concurrently(self) -> None:
        # Each loader waits until all three are running at the same time
        barrier = threading.Barrier(3, timeout=5)

        def load(uid: str) -> UserSnapshot:
            barrier.wait()
            return snap(uid.upper())

        snapshots = collect_snapshots(["x", "y", "z"], load)
        self.assertTrue(all(s.error is None for s in snapshots))

    def test_empty(self) -> None:
        self.assertEqual(collect_snapshots([], lambda uid: snap(uid)), [])


if __name__ == "__main__":
    unittest.main()
