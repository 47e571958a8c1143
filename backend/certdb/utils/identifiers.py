from __future__ import annotations

import os
import time
import uuid


def generate_uuid7() -> str:
    """
    Generate a time-ordered UUIDv7 string.

    Used as the primary key default everywhere, so rows created later in a
    transaction always sort after earlier ones.
    """
    millis = int(time.time() * 1000)
    raw = bytearray(millis.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def correlation_id(*parts: object) -> str:
    """Build a deterministic correlation id such as 'cv:<id>:locked_final'."""
    return ":".join(str(part) for part in parts)
