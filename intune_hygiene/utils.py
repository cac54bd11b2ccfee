"""Shared helpers for Intune hygiene workflows."""
from __future__ import annotations

from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Iterator, Optional, Union

# Graph reports devices that never checked in with this sentinel value.
NEVER_SYNCED = datetime(1, 1, 1, tzinfo=timezone.utc)


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a Graph ``DateTimeOffset`` string into an aware UTC datetime.

    Returns ``None`` for missing values and for the ``0001-01-01`` sentinel
    Graph uses when a device has never synced.
    """

    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected a timestamp string, got {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Graph emits up to seven fractional digits; fromisoformat accepts six.
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        offset = ""
        for idx, char in enumerate(tail):
            if not char.isdigit():
                offset = tail[idx:]
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    if parsed == NEVER_SYNCED:
        return None
    return parsed


def format_timestamp(value: Optional[datetime]) -> str:
    """Render ``value`` for reports, or an empty string when missing."""

    if value is None:
        return ""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def timestamped_report_path(
    directory: Union[str, Path], prefix: str, when: datetime, suffix: str = ".csv"
) -> Path:
    """Return ``directory/prefix_YYYYMMDD_HHMMSS<suffix>`` for ``when``."""

    return Path(directory) / f"{prefix}_{when.strftime('%Y%m%d_%H%M%S')}{suffix}"


def numbered_paths(path: Path) -> Iterator[Path]:
    """Yield *path*, then ``<stem>_1<suffix>``, ``<stem>_2<suffix>`` and so on."""

    yield path
    for idx in count(1):
        yield path.with_name(f"{path.stem}_{idx}{path.suffix}")


__all__ = [
    "NEVER_SYNCED",
    "format_timestamp",
    "numbered_paths",
    "parse_graph_datetime",
    "timestamped_report_path",
]
