"""
End-to-end tests for the ClassTable facade on a temporary data directory.

The share API is replaced by a fake fetcher returning a fixed payload:
Wednesdays, Calculus in periods 1-2 every week and Physics in period 3
in odd weeks only. The term starts Monday 2025-09-01.
"""

import json
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest import mock

from classtable.aggregate import ERROR, FREE, IN_CLASS, NO_DATA, NOT_IMPORTED, SKIPPING
from classtable.config import Settings
from classtable.errors import ImportFetchError, ImportParseError, ScheduleNotFound
from classtable.model import NEXT, NONE_TODAY, ONGOING
from classtable.service import ClassTable, MemberInfo

PAYLOAD = "\n".join(
    [
        json.dumps({"name": "Fall"}),
        json.dumps(
            [
                {"node": 1, "startTime": "08:00", "endTime": "08:45"},
                {"node": 2, "startTime": "08:55", "endTime": "09:40"},
                {"node": 3, "startTime": "10:00", "endTime": "10:45"},
            ]
        ),
        json.dumps({"maxWeek": 16, "startDate": "2025-9-1"}),
        json.dumps([{"id": 1, "courseName": "Calculus"}, {"id": 2, "courseName": "Physics"}]),
        json.dumps(
            [
                {"id": 1, "startNode": 1, "step": 2, "day": 3, "startWeek": 1, "endWeek": 16, "teacher": "Li", "room": "A1", "type": 0},
                {"id": 2, "startNode": 3, "step": 1, "day": 3, "startWeek": 1, "endWeek": 16, "teacher": "Wu", "room": "B2", "type": 1},
            ]
        ),
    ]
)

SHARE_MESSAGE = "这是来自「WakeUp课程表」的课表分享……分享口令为「CODE42」"

WED_0810 = datetime(2025, 9, 3, 8, 10)


class FakeFetcher:
    def __init__(self, payload: str = PAYLOAD) -> None:
        self.payload = payload
        self.calls = []

    def __call__(self, code: str, timeout: float = 5.0) -> str:
        self.calls.append((code, timeout))
        return self.payload


class ServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(data_dir=Path(self._tmp.name), term_start=date(2025, 9, 1), fetch_timeout=2.5)
        self.fetcher = FakeFetcher()
        self.app = ClassTable.from_settings(self.settings)
        self.app.fetcher = self.fetcher

    def tearDown(self) -> None:
        self._tmp.cleanup()


class TestImport(ServiceTestCase):
    def test_import_share_message(self) -> None:
        schedule = self.app.import_share(SHARE_MESSAGE, "u1", group_id="g1", user_name="Alice")
        self.assertEqual(self.fetcher.calls, [("CODE42", 2.5)])
        self.assertEqual(schedule.max_week, 16)
        self.assertTrue(self.app.schedules.exists("u1"))
        self.assertEqual(self.app.groups.list_members("g1"), {"u1"})
        self.assertEqual(self.app.groups.display_names("g1"), {"u1": "Alice"})

    def test_reimport_overwrites(self) -> None:
        self.app.import_payload(PAYLOAD, "u1")
        other = PAYLOAD.replace('"Calculus"', '"Statistics"')
        self.app.import_payload(other, "u1")
        self.assertEqual(self.app.status("u1", WED_0810).course_name, "Statistics")

    def test_parse_error_writes_nothing(self) -> None:
        self.fetcher.payload = "garbage"
        with self.assertRaises(ImportParseError):
            self.app.import_share("CODE", "u1", group_id="g1")
        self.assertFalse(self.app.schedules.exists("u1"))
        self.assertEqual(self.app.groups.list_members("g1"), set())

    def test_fetch_error_propagates(self) -> None:
        def failing(code: str, timeout: float = 5.0) -> str:
            raise ImportFetchError("timed out")

        self.app.fetcher = failing
        with self.assertRaises(ImportFetchError):
            self.app.import_share("CODE", "u1")


class TestSingleUser(ServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.app.import_payload(PAYLOAD, "u1", group_id="g1")

    def test_status(self) -> None:
        result = self.app.status("u1", WED_0810)
        self.assertEqual(result.status, ONGOING)
        self.assertEqual((result.start_time, result.end_time), ("08:00", "09:40"))

        self.assertEqual(self.app.status("u1", datetime(2025, 9, 3, 9, 50)).status, NEXT)

    def test_odd_week_class_missing_in_even_week(self) -> None:
        self.assertEqual(self.app.status("u1", datetime(2025, 9, 10, 9, 50)).status, NONE_TODAY)

    def test_unknown_user(self) -> None:
        with self.assertRaises(ScheduleNotFound):
            self.app.status("nobody", WED_0810)

    def test_today(self) -> None:
        self.assertIn("Physics", self.app.today("u1", WED_0810))

    def test_skip_lasts_until_block_end(self) -> None:
        result = self.app.skip("u1", WED_0810)
        self.assertIsNotNone(result)
        self.assertEqual(result.end_time, "09:40")
        self.assertTrue(self.app.skip_flags.get("u1"))

        raw = json.loads(self.settings.skip_flags_path.read_text(encoding="utf-8"))
        self.assertIn("u1", raw)

        self.assertTrue(self.app.cancel_skip("u1"))
        self.assertFalse(self.app.skip_flags.get("u1"))

    def test_skip_next_class_lasts_until_it_ends(self) -> None:
        # 09:50 falls in the break before Physics (10:00-10:45)
        with mock.patch.object(self.app.skip_flags, "set_with_expiry", wraps=self.app.skip_flags.set_with_expiry) as spy:
            result = self.app.skip("u1", datetime(2025, 9, 3, 9, 50))
        self.assertEqual(result.status, NEXT)
        self.assertEqual((result.course_name, result.end_time), ("Physics", "10:45"))
        spy.assert_called_once_with("u1", 55 * 60.0)
        self.assertTrue(self.app.skip_flags.get("u1"))

    def test_nothing_to_skip(self) -> None:
        self.assertIsNone(self.app.skip("u1", datetime(2025, 9, 3, 18, 0)))
        self.assertFalse(self.app.skip_flags.get("u1"))


class TestGroupRows(ServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.app.import_payload(PAYLOAD, "busy", group_id="g1", user_name="Busy")
        self.app.import_payload(PAYLOAD.replace('"day": 3', '"day": 4'), "idle", group_id="g1", user_name="Idle")

    def test_rows_are_ranked(self) -> None:
        rows = self.app.group_rows("g1", WED_0810)
        self.assertEqual([(r.user_name, r.state) for r in rows], [("Busy", IN_CLASS), ("Idle", FREE)])
        self.assertEqual(rows[0].avatar_url, "https://q1.qlogo.cn/g?b=qq&nk=busy&s=100")

    def test_empty_group_gets_sentinel(self) -> None:
        rows = self.app.group_rows("empty", WED_0810)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].state, NO_DATA)

    def test_results_are_cached_until_a_write(self) -> None:
        first = self.app.group_rows("g1", WED_0810)
        # a later moment is served from cache
        self.assertEqual(self.app.group_rows("g1", datetime(2025, 9, 3, 20, 0)), first)

        self.app.skip("busy", WED_0810)
        rows = self.app.group_rows("g1", WED_0810)
        self.assertEqual(rows[0].state, SKIPPING)

    def test_cache_key_includes_limit(self) -> None:
        self.assertEqual(len(self.app.group_rows("g1", WED_0810, limit=1)), 1)
        self.assertEqual(len(self.app.group_rows("g1", WED_0810)), 2)

    def test_without_cache(self) -> None:
        app = ClassTable.from_settings(self.settings, use_cache=False)
        self.assertIsNone(app.cache)
        self.assertEqual(app.group_rows("g1", datetime(2025, 9, 3, 20, 0))[0].state, FREE)

    def test_broken_and_missing_users_do_not_break_the_batch(self) -> None:
        self.app.groups.add_member("g1", "ghost", "Ghost")
        self.app.groups.add_member("g1", "broken", "Broken")
        (self.settings.users_dir / "broken.json").write_text("{oops", encoding="utf-8")

        rows = self.app.group_rows("g1", WED_0810)
        states = {r.user_name: r.state for r in rows}
        self.assertEqual(states, {"Busy": IN_CLASS, "Idle": FREE, "Ghost": NOT_IMPORTED, "Broken": ERROR})
        self.assertEqual(rows[-1].user_name, "Broken")

    def test_corrupt_skip_flags_do_not_hide_schedules(self) -> None:
        self.settings.skip_flags_path.write_text("{oops", encoding="utf-8")
        with self.assertLogs("classtable.service", level="WARNING"):
            rows = self.app.group_rows("g1", WED_0810)
        self.assertEqual([(r.user_name, r.state) for r in rows], [("Busy", IN_CLASS), ("Idle", FREE)])

    def test_prune_against_live_members(self) -> None:
        rows = self.app.group_rows("g1", WED_0810, live_member_ids=["busy"])
        self.assertEqual([r.user_id for r in rows], ["busy"])
        self.assertEqual(self.app.groups.list_members("g1"), {"busy"})

    def test_member_lookup_names(self) -> None:
        def lookup(group_id: str, user_id: str):
            if user_id == "busy":
                return MemberInfo(name="Card Name", avatar_url="https://img/busy.png")
            raise RuntimeError("member list unavailable")

        app = ClassTable.from_settings(self.settings, use_cache=False, member_lookup=lookup)
        rows = app.group_rows("g1", WED_0810)
        self.assertEqual((rows[0].user_name, rows[0].avatar_url), ("Card Name", "https://img/busy.png"))
        self.assertEqual(rows[1].user_name, "Idle")


if __name__ == "__main__":
    unittest.main()
