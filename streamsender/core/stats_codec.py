"""
Encoding helpers for persisting Stats rows.

Raw latencies are stored as concatenated little-endian int64 nanosecond values,
which is the blob layout written by schema version 1 and kept in version 2.
"""

from __future__ import annotations

import struct
from datetime import UTC, datetime, timedelta
from typing import Optional

_INT64 = struct.Struct("<q")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def encode_latencies(latencies: list[int]) -> bytes:
    if not latencies:
        return b""
    return struct.pack(f"<{len(latencies)}q", *(int(v) for v in latencies))


def decode_latencies(blob: Optional[bytes]) -> list[int]:
    if not blob:
        return []
    data = bytes(blob)
    if len(data) % _INT64.size:
        raise ValueError(
            f"latency blob length {len(data)} is not a multiple of {_INT64.size}"
        )
    return list(struct.unpack(f"<{len(data) // _INT64.size}q", data))


def format_success_rate(rate: float) -> str:
    return f"{float(rate):f}"


def parse_success_rate(value: object) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def datetime_to_unix_nanos(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def unix_nanos_to_datetime(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return _EPOCH + timedelta(microseconds=int(value) // 1_000)
