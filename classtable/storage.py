"""
Persistent storage for schedules, group membership and skip flags.

Layout below the data directory:

    users/<user_id>.json      one canonical schedule document per user
    groups/<group_id>.json    {"members": [...], "names": {user_id: name}}
    skip_flags.json           {user_id: expires_at (unix seconds)}

Writes go to a temp file first and are moved into place with os.replace.
Schedule documents are migrated to the current version at load time.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from classtable.errors import ScheduleFormatError, ScheduleNotFound, StoreIOError
from classtable.model import Schedule, migrate_document

logger = logging.getLogger(__name__)


def _safe_key(key: str) -> str:
    """
    Ids become file names, so they must not contain path parts.
    """
    k = str(key).strip()
    if not k or k in (".", "..") or "/" in k or "\\" in k:
        raise StoreIOError(f"Invalid identifier: {key!r}")
    return k


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ScheduleFormatError(f"Corrupt JSON in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise StoreIOError(f"Cannot read {path}: {exc}") from exc


def _write_json_atomic(path: Path, data: Any) -> None:
    """
    Write JSON next to `path` and atomically move it into place.
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as fh:
            tmp_name = fh.name
            json.dump(data, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except OSError as exc:
        raise StoreIOError(f"Cannot write {path}: {exc}") from exc
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class ScheduleStore:
    """
    One canonical schedule document per user.
    """

    def __init__(self, root: str | Path, default_start_date: date, default_max_week: int = 18) -> None:
        self.root = Path(root)
        self.default_start_date = default_start_date
        self.default_max_week = default_max_week

    def path_for(self, user_id: str) -> Path:
        return self.root / f"{_safe_key(user_id)}.json"

    def exists(self, user_id: str) -> bool:
        return self.path_for(user_id).exists()

    def put(self, user_id: str, schedule: Schedule) -> None:
        # Serialize before touching the file so a bad document never reaches disk
        document = schedule.to_document()
        _write_json_atomic(self.path_for(user_id), document)

    def get(self, user_id: str) -> Schedule:
        path = self.path_for(user_id)
        if not path.exists():
            raise ScheduleNotFound(user_id)
        raw = _read_json(path)
        document = migrate_document(raw, self.default_start_date, self.default_max_week)
        return Schedule.from_document(document)

    def delete(self, user_id: str) -> bool:
        path = self.path_for(user_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreIOError(f"Cannot delete {path}: {exc}") from exc
        return True


# ---------------------------------------------------------------------------
# Group membership
# ---------------------------------------------------------------------------


class GroupStore:
    """
    Which users imported a schedule from within which group.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def path_for(self, group_id: str) -> Path:
        return self.root / f"{_safe_key(group_id)}.json"

    def _load(self, group_id: str) -> Dict[str, Any]:
        path = self.path_for(group_id)
        if not path.exists():
            return {"members": [], "names": {}}
        data = _read_json(path)
        # Older files were a bare list of user ids
        if isinstance(data, list):
            return {"members": [str(x) for x in data], "names": {}}
        if not isinstance(data, dict):
            raise StoreIOError(f"Unrecognised group file {path}")
        members = data.get("members", [])
        names = data.get("names", {})
        return {
            "members": [str(x) for x in members] if isinstance(members, list) else [],
            "names": {str(k): str(v) for k, v in names.items()} if isinstance(names, dict) else {},
        }

    def _save(self, group_id: str, data: Dict[str, Any]) -> None:
        data = {"members": sorted(set(data["members"])), "names": data["names"]}
        _write_json_atomic(self.path_for(group_id), data)

    def add_member(self, group_id: str, user_id: str, name: Optional[str] = None) -> bool:
        """
        Register user_id in group_id. Returns True if the user was new.
        """
        uid = str(user_id)
        with self._lock:
            data = self._load(group_id)
            added = uid not in data["members"]
            if added:
                data["members"].append(uid)
            if name:
                data["names"][uid] = name
            if added or name:
                self._save(group_id, data)
        if added:
            logger.info("Added user %s to group %s", uid, group_id)
        return added

    def remove_member(self, group_id: str, user_id: str) -> bool:
        uid = str(user_id)
        with self._lock:
            data = self._load(group_id)
            if uid not in data["members"]:
                return False
            data["members"].remove(uid)
            data["names"].pop(uid, None)
            self._save(group_id, data)
        logger.info("Removed user %s from group %s", uid, group_id)
        return True

    def list_members(self, group_id: str) -> set[str]:
        return set(self._load(group_id)["members"])

    def display_names(self, group_id: str) -> Dict[str, str]:
        return dict(self._load(group_id)["names"])

    def prune(self, group_id: str, live_member_ids: Iterable[str]) -> set[str]:
        """
        Drop members that are no longer in the live group. Returns who was removed.
        """
        live = {str(x) for x in live_member_ids}
        with self._lock:
            data = self._load(group_id)
            gone = {uid for uid in data["members"] if uid not in live}
            if gone:
                data["members"] = [uid for uid in data["members"] if uid not in gone]
                for uid in gone:
                    data["names"].pop(uid, None)
                self._save(group_id, data)
        if gone:
            logger.info("Pruned %d departed member(s) from group %s", len(gone), group_id)
        return gone


# ---------------------------------------------------------------------------
# Skip flags
# ---------------------------------------------------------------------------


class SkipFlagStore:
    """
    Short-lived "I'm skipping this class" markers, one per user.

    Concurrent set/clear calls are serialized by a lock; the last write wins.
    """

    def __init__(self, path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, float]:
        if not self.path.exists():
            return {}
        data = _read_json(self.path)
        if not isinstance(data, dict):
            raise StoreIOError(f"Unrecognised skip flag file {self.path}")
        out: Dict[str, float] = {}
        for k, v in data.items():
            try:
                out[str(k)] = float(v)
            except (TypeError, ValueError):
                continue
        return out

    def _save_live(self, flags: Dict[str, float]) -> None:
        now = self._clock()
        _write_json_atomic(self.path, {k: v for k, v in flags.items() if v > now})

    def set_with_expiry(self, user_id: str, ttl_seconds: float) -> None:
        with self._lock:
            flags = self._load()
            flags[str(user_id)] = self._clock() + ttl_seconds
            self._save_live(flags)

    def get(self, user_id: str) -> bool:
        expires_at = self._load().get(str(user_id))
        return expires_at is not None and self._clock() < expires_at

    def clear(self, user_id: str) -> bool:
        """
        Remove the user's flag. Returns True if an active flag was removed.
        """
        with self._lock:
            flags = self._load()
            expires_at = flags.pop(str(user_id), None)
            self._save_live(flags)
        return expires_at is not None and self._clock() < expires_at
