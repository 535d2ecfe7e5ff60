"""
Runtime settings.

All knobs can be overridden through environment variables so the same code
runs inside a bot, from the CLI, or in tests without editing files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

from classtable.errors import ConfigError


PACKAGE_DIR = Path(__file__).resolve().parent

DEFAULT_TERM_START = date(2025, 9, 1)
DEFAULT_MAX_WEEK = 18
DEFAULT_FETCH_TIMEOUT = 5.0
DEFAULT_CACHE_TTL = 120.0
DEFAULT_MERGE_GAP = 30
DEFAULT_AVATAR_URL = "https://q1.qlogo.cn/g?b=qq&nk={user_id}&s=100"


@dataclass
class Settings:
    data_dir: Path
    term_start: date = DEFAULT_TERM_START
    max_week: int = DEFAULT_MAX_WEEK
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    cache_ttl: float = DEFAULT_CACHE_TTL
    merge_gap: int = DEFAULT_MERGE_GAP
    avatar_url: str = DEFAULT_AVATAR_URL

    @property
    def users_dir(self) -> Path:
        return self.data_dir / "users"

    @property
    def groups_dir(self) -> Path:
        return self.data_dir / "groups"

    @property
    def skip_flags_path(self) -> Path:
        return self.data_dir / "skip_flags.json"


def _env_value(name: str, default: Any, convert: Callable[[str], Any]) -> Any:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return convert(raw)
    except ValueError:
        raise ConfigError(f"{name} has an invalid value: {raw!r}") from None


def _parse_date(raw: str) -> date:
    return datetime.strptime(raw, "%Y-%m-%d").date()


def load_settings(data_dir: str | Path | None = None) -> Settings:
    """
    Build Settings from CLASSTABLE_* environment variables.

    An explicit data_dir (e.g. from a CLI flag or a test) wins over
    CLASSTABLE_DATA_DIR.
    """
    if data_dir is None:
        data_dir = os.environ.get("CLASSTABLE_DATA_DIR") or PACKAGE_DIR / "data"

    return Settings(
        data_dir=Path(data_dir),
        term_start=_env_value("CLASSTABLE_TERM_START", DEFAULT_TERM_START, _parse_date),
        max_week=_env_value("CLASSTABLE_MAX_WEEK", DEFAULT_MAX_WEEK, int),
        fetch_timeout=_env_value("CLASSTABLE_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT, float),
        cache_ttl=_env_value("CLASSTABLE_CACHE_TTL", DEFAULT_CACHE_TTL, float),
        merge_gap=_env_value("CLASSTABLE_MERGE_GAP", DEFAULT_MERGE_GAP, int),
        avatar_url=os.environ.get("CLASSTABLE_AVATAR_URL", DEFAULT_AVATAR_URL),
    )
