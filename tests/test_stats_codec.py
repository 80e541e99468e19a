import struct
from datetime import UTC, datetime

import pytest

from streamsender.core.stats_codec import (
    datetime_to_unix_nanos,
    decode_latencies,
    encode_latencies,
    format_success_rate,
    parse_success_rate,
    unix_nanos_to_datetime,
)


def test_latencies_use_little_endian_int64_layout():
    blob = encode_latencies([1, -2, 3_000_000_000])
    assert blob == struct.pack("<qqq", 1, -2, 3_000_000_000)
    assert decode_latencies(blob) == [1, -2, 3_000_000_000]


def test_empty_latencies():
    assert encode_latencies([]) == b""
    assert decode_latencies(b"") == []
    assert decode_latencies(None) == []


def test_truncated_latency_blob_is_rejected():
    with pytest.raises(ValueError):
        decode_latencies(b"\x01\x02\x03")


def test_success_rate_text():
    assert format_success_rate(1.0) == "1.000000"
    assert parse_success_rate("0.500000") == pytest.approx(0.5)
    assert parse_success_rate(None) == 0.0


def test_unix_nanos():
    start = datetime(2020, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)
    nanos = datetime_to_unix_nanos(start)
    assert nanos == 1588327200_123456000
    assert unix_nanos_to_datetime(nanos) == start
    assert datetime_to_unix_nanos(None) is None
    assert unix_nanos_to_datetime(None) is None


def test_naive_datetime_is_treated_as_utc():
    assert datetime_to_unix_nanos(datetime(1970, 1, 1, 0, 0, 1)) == 1_000_000_000
