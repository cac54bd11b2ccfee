"""Tests for Graph timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from intune_hygiene.models import DeviceRecord
from intune_hygiene.utils import format_timestamp, parse_graph_datetime


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-05-01T10:20:30Z", datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)),
        (
            "2024-05-01T10:20:30.1234567Z",
            datetime(2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc),
        ),
        ("2024-05-01T12:20:30+02:00", datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)),
        ("2024-05-01T10:20:30", datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)),
    ],
)
def test_parse_graph_datetime(value, expected) -> None:
    """Graph timestamps become aware UTC datetimes."""

    assert parse_graph_datetime(value) == expected


@pytest.mark.parametrize("value", [None, "", "0001-01-01T00:00:00Z"])
def test_parse_graph_datetime_missing_values(value) -> None:
    """Missing values and the never-synced sentinel map to ``None``."""

    assert parse_graph_datetime(value) is None


def test_device_record_from_graph_handles_nulls() -> None:
    """Null Graph properties become empty strings."""

    record = DeviceRecord.from_graph({"id": "abc", "deviceName": None, "serialNumber": None})

    assert record.device_name == ""
    assert record.serial_number == ""
    assert record.last_sync is None
    assert format_timestamp(record.last_sync) == ""
