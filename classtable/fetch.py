"""
WakeUp share-code import.

A user shares their timetable from the WakeUp app as a chat message that
ends with the share code in corner brackets. We pull the code out of the
message and ask the WakeUp share API for the export blob.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from classtable.errors import ImportFetchError


# ---------------------------------------------------------------------------
# URLs & headers
# ---------------------------------------------------------------------------

SHARE_URL = "https://i.wakeup.fun/share_schedule/get"

# The API only answers clients that look like the Android app
HEADERS = {
    "User-Agent": "okhttp/3.14.9",
    "Connection": "Keep-Alive",
    "Accept-Encoding": "gzip",
    "version": "243",
}

SHARE_MESSAGE_PREFIX = "这是来自「WakeUp课程表」的课表分享"
_SHARE_CODE_RE = re.compile(r"分享口令为「(.*?)」")

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


def is_share_message(text: str) -> bool:
    return text.strip().startswith(SHARE_MESSAGE_PREFIX)


def extract_share_code(text: str) -> str:
    """
    Return the share code from a WakeUp share message.

    Text without the share marker is taken to be the bare code.
    Raises ImportFetchError if nothing usable is left.
    """
    raw = (text or "").strip()
    match = _SHARE_CODE_RE.search(raw)
    if match:
        code = match.group(1).strip()
    elif is_share_message(raw):
        code = ""
    else:
        code = raw
    if not code:
        raise ImportFetchError("Could not find a share code in the message")
    return code


def payload_from_response(body: Any) -> str:
    """
    Validate the share API answer and return its `data` blob.

    Only {"status": 1, "message": "success", "data": "..."} is usable.
    """
    if (
        isinstance(body, dict)
        and body.get("status") == 1
        and body.get("message") == "success"
        and isinstance(body.get("data"), str)
        and body["data"]
    ):
        return body["data"]
    logger.warning("Share API rejected the import: %r", body)
    raise ImportFetchError(
        "Import failed: the share code is wrong or has expired",
        response=body,
    )


def fetch_share_schedule(
    share_code: str,
    timeout: float = 5.0,
    session: Optional[requests.Session] = None,
) -> str:
    """
    Fetch the export blob for a share code. Never retries.
    """
    http = session if session is not None else requests
    try:
        resp = http.get(SHARE_URL, params={"key": share_code}, headers=HEADERS, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.error("Share API request failed: %s", exc)
        raise ImportFetchError(f"Share API request failed: {exc}") from exc

    try:
        body = resp.json()
    except ValueError as exc:
        raise ImportFetchError("Share API returned a non-JSON response", response=resp.text) from exc

    return payload_from_response(body)
