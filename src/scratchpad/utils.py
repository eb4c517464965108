from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone

import httpx

from .config import ERROR_EXCERPT_CHARS

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id() -> str:
    """Unique token for threads and messages: ``<epoch-ms>-<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def get_timestamp() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extract_error_message(response: httpx.Response, prefix: str = "Streaming request failed") -> str:
    try:
        text = response.text
    except httpx.ResponseNotRead:
        text = ""
    excerpt = text[:ERROR_EXCERPT_CHARS]
    return f"{prefix} ({response.status_code}): {excerpt}"


def trim_string(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""
