from __future__ import annotations

import os
import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    UUIDv7 layout per draft:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


_REQUEST_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_request_number(*, now: Optional[datetime] = None) -> str:
    """
    Human-readable training request number, e.g. 'TR-20260119-7K2Q9D'.

    `now` is keyword-only: SQLAlchemy passes the execution context to
    column defaults that accept a positional argument.
    """
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    suffix = "".join(secrets.choice(_REQUEST_SUFFIX_ALPHABET) for _ in range(6))
    return f"TR-{stamp}-{suffix}"
