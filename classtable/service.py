"""
ClassTable: the operations a chat bot (or the CLI) calls.

This module wires the stores, the share API client and the optional result
cache around the pure engine in normalize/query/aggregate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from classtable.aggregate import UserSnapshot, collect_snapshots, no_data_row, rank_users
from classtable.cache import MemoryCache
from classtable.config import Settings
from classtable.errors import MalformedTimeError, ScheduleNotFound, StoreIOError
from classtable.fetch import extract_share_code, fetch_share_schedule
from classtable.model import DisplayRow, QueryResult, Schedule
from classtable.normalize import normalize_payload
from classtable.query import find_current_or_next, format_today
from classtable.storage import GroupStore, ScheduleStore, SkipFlagStore
from classtable.timeutils import parse_time

logger = logging.getLogger(__name__)


@dataclass
class MemberInfo:
    """
    What the chat platform knows about a group member.
    """

    name: Optional[str] = None
    avatar_url: Optional[str] = None


MemberLookup = Callable[[str, str], Optional[MemberInfo]]
Fetcher = Callable[..., str]


class ClassTable:
    def __init__(
        self,
        settings: Settings,
        schedules: ScheduleStore,
        groups: GroupStore,
        skip_flags: SkipFlagStore,
        cache: Optional[MemoryCache] = None,
        fetcher: Fetcher = fetch_share_schedule,
        member_lookup: Optional[MemberLookup] = None,
    ) -> None:
        self.settings = settings
        self.schedules = schedules
        self.groups = groups
        self.skip_flags = skip_flags
        self.cache = cache
        self.fetcher = fetcher
        self.member_lookup = member_lookup

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        use_cache: bool = True,
        member_lookup: Optional[MemberLookup] = None,
    ) -> "ClassTable":
        """
        Build a ClassTable backed by JSON files under settings.data_dir.
        """
        return cls(
            settings=settings,
            schedules=ScheduleStore(settings.users_dir, settings.term_start, settings.max_week),
            groups=GroupStore(settings.groups_dir),
            skip_flags=SkipFlagStore(settings.skip_flags_path),
            cache=MemoryCache(max_size=50, default_ttl=settings.cache_ttl) if use_cache else None,
            member_lookup=member_lookup,
        )

    # -----------------------------------------------------------------------
    # Import
    # -----------------------------------------------------------------------

    def import_payload(
        self,
        payload: str,
        user_id: str,
        group_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> Schedule:
        """
        Normalize an export blob and store it as the user's schedule.

        Nothing is written if the payload cannot be parsed.
        """
        schedule = normalize_payload(payload, self.settings.term_start, self.settings.max_week)
        self.schedules.put(user_id, schedule)
        logger.info("Imported schedule for user %s (%d weeks)", user_id, len(schedule.weeks))
        if group_id is not None:
            self.groups.add_member(group_id, user_id, user_name)
        self._invalidate()
        return schedule

    def import_share(
        self,
        text: str,
        user_id: str,
        group_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> Schedule:
        """
        Import from a WakeUp share message (or a bare share code).
        """
        code = extract_share_code(text)
        payload = self.fetcher(code, timeout=self.settings.fetch_timeout)
        return self.import_payload(payload, user_id, group_id, user_name)

    # -----------------------------------------------------------------------
    # Single-user queries
    # -----------------------------------------------------------------------

    def status(self, user_id: str, now: datetime) -> QueryResult:
        return find_current_or_next(self.schedules.get(user_id), now, self.settings.merge_gap)

    def today(self, user_id: str, now: datetime) -> str:
        return format_today(self.schedules.get(user_id), now)

    def skip(self, user_id: str, now: datetime) -> Optional[QueryResult]:
        """
        Mark the user as skipping their current (or next) class.

        The flag expires when that class ends. Returns the class being
        skipped, or None if there is nothing left to skip today.
        """
        result = self.status(user_id, now)
        if not result.has_class or not result.end_time:
            return None
        try:
            end_hour, end_minute = parse_time(result.end_time)
        except MalformedTimeError:
            logger.warning("Cannot skip %s for user %s: unknown end time", result.course_name, user_id)
            return None

        ends_at = now.replace(hour=end_hour, minute=end_minute, second=0, microsecond=0)
        ttl = (ends_at - now).total_seconds()
        if ttl <= 0:
            return None

        self.skip_flags.set_with_expiry(user_id, ttl)
        logger.info("User %s skips %s until %s", user_id, result.course_name, result.end_time)
        self._invalidate()
        return result

    def cancel_skip(self, user_id: str) -> bool:
        removed = self.skip_flags.clear(user_id)
        self._invalidate()
        return removed

    # -----------------------------------------------------------------------
    # Group overview
    # -----------------------------------------------------------------------

    def group_rows(
        self,
        group_id: str,
        now: datetime,
        limit: Optional[int] = None,
        live_member_ids: Optional[Iterable[str]] = None,
    ) -> List[DisplayRow]:
        """
        Ranked "who is in class" rows for a group.

        live_member_ids, when given, prunes users who left the group first.
        """
        if live_member_ids is not None and self.groups.prune(group_id, live_member_ids):
            self._invalidate(group_id)

        key = (group_id, limit)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        members = sorted(self.groups.list_members(group_id))
        if not members:
            logger.info("Group %s has no members with a schedule", group_id)
            rows = [no_data_row()]
        else:
            names = self.groups.display_names(group_id)
            snapshots = collect_snapshots(members, lambda uid: self._snapshot(group_id, uid, names))
            rows = rank_users(snapshots, now, limit, self.settings.merge_gap)

        if self.cache is not None:
            self.cache.set(key, rows)
        return list(rows)

    def _member_info(self, group_id: str, user_id: str) -> MemberInfo:
        if self.member_lookup is None:
            return MemberInfo()
        try:
            return self.member_lookup(group_id, user_id) or MemberInfo()
        except Exception as exc:  # presence lookup is best effort
            logger.debug("Member lookup failed for %s in %s: %s", user_id, group_id, exc)
            return MemberInfo()

    def _snapshot(self, group_id: str, user_id: str, names: Dict[str, str]) -> UserSnapshot:
        info = self._member_info(group_id, user_id)
        snapshot = UserSnapshot(
            user_id=user_id,
            user_name=info.name or names.get(user_id) or f"User {user_id}",
            avatar_url=info.avatar_url or self.settings.avatar_url.format(user_id=user_id),
        )
        try:
            snapshot.schedule = self.schedules.get(user_id)
        except ScheduleNotFound:
            return snapshot
        except StoreIOError as exc:
            logger.warning("Cannot read schedule of user %s: %s", user_id, exc)
            snapshot.error = str(exc)
            return snapshot
        try:
            snapshot.skipping = self.skip_flags.get(user_id)
        except StoreIOError as exc:
            logger.warning("Cannot read skip flag of user %s: %s", user_id, exc)
        return snapshot

    def _invalidate(self, group_id: Optional[str] = None) -> None:
        if self.cache is None:
            return
        if group_id is None:
            self.cache.clear()
        else:
            self.cache.evict_matching(lambda key: key[0] == group_id)
