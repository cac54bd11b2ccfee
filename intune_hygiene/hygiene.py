"""Read-mostly Intune hygiene reports: duplicate serials and primary users."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .graph import GraphError, device_name_prefix_filter
from .models import DeviceRecord
from .utils import format_timestamp, parse_graph_datetime

logger = logging.getLogger(__name__)

# Serial numbers OEMs ship when the firmware field was never populated.
PLACEHOLDER_SERIALS = frozenset(
    {
        "",
        "0",
        "default string",
        "to be filled by o.e.m.",
        "system serial number",
    }
)

DUPLICATE_HEADERS = (
    "SerialNumber",
    "DeviceId",
    "DeviceName",
    "LastSyncDateTime",
    "UserPrincipalName",
    "Keep",
)
PRIMARY_USER_HEADERS = (
    "DeviceId",
    "DeviceName",
    "CurrentPrimaryUserId",
    "LastLoggedOnUserId",
    "Action",
    "Detail",
)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class DeviceInventory(Protocol):
    def list_managed_devices(self, filter_expr: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


class PrimaryUserManager(DeviceInventory, Protocol):
    def get_logged_on_users(self, device_id: str) -> List[Dict[str, Any]]:
        ...

    def get_primary_users(self, device_id: str) -> List[Dict[str, Any]]:
        ...

    def set_primary_user(self, device_id: str, user_id: str) -> None:
        ...


@dataclass
class DuplicateGroup:
    """Devices sharing one hardware serial, newest sync first."""

    serial_number: str
    devices: List[DeviceRecord]

    @property
    def keeper(self) -> DeviceRecord:
        return self.devices[0]

    @property
    def stale(self) -> List[DeviceRecord]:
        return self.devices[1:]


def device_records(items: Iterable[Dict[str, Any]]) -> List[DeviceRecord]:
    """Parse managed device payloads, skipping ones that cannot be read."""

    records: List[DeviceRecord] = []
    for item in items:
        try:
            records.append(DeviceRecord.from_graph(item))
        except ValueError as exc:
            logger.warning("Ignoring unreadable managed device %r: %s", item, exc)
    return records


def normalize_serial(serial: Optional[str]) -> str:
    """Return *serial* stripped and upper-cased, or ``""`` for placeholders."""

    value = (serial or "").strip()
    if value.lower() in PLACEHOLDER_SERIALS:
        return ""
    return value.upper()


def group_duplicate_serials(devices: Iterable[DeviceRecord]) -> List[DuplicateGroup]:
    """Group *devices* by serial number and keep groups with more than one member."""

    by_serial: Dict[str, List[DeviceRecord]] = {}
    for device in devices:
        key = normalize_serial(device.serial_number)
        if not key:
            continue
        by_serial.setdefault(key, []).append(device)

    groups: List[DuplicateGroup] = []
    for serial in sorted(by_serial):
        members = by_serial[serial]
        if len(members) < 2:
            continue
        members = sorted(members, key=lambda d: d.last_sync or _OLDEST, reverse=True)
        groups.append(DuplicateGroup(serial_number=serial, devices=members))
    return groups


def find_duplicate_serials(client: DeviceInventory) -> List[DuplicateGroup]:
    """List every managed device and return groups sharing a serial number."""

    devices = device_records(client.list_managed_devices())
    logger.debug("Checking %d managed devices for duplicate serials", len(devices))
    return group_duplicate_serials(devices)


def duplicate_rows(groups: Iterable[DuplicateGroup]) -> List[List[str]]:
    rows: List[List[str]] = []
    for group in groups:
        for idx, device in enumerate(group.devices):
            rows.append(
                [
                    group.serial_number,
                    device.id,
                    device.device_name,
                    format_timestamp(device.last_sync),
                    device.user_principal_name,
                    "Yes" if idx == 0 else "No",
                ]
            )
    return rows


def print_duplicates(groups: Sequence[DuplicateGroup]) -> None:
    """Pretty-print duplicate serial groups to stdout."""

    if not groups:
        print("No duplicate serial numbers detected.")
        return

    header = f"{'SerialNumber':<20} {'DeviceName':<24} {'LastSyncDateTime':<21} Keep"
    print(header)
    print("-" * len(header))
    for group in groups:
        for idx, device in enumerate(group.devices):
            print(
                f"{group.serial_number[:20]:<20} {device.device_name[:24]:<24} "
                f"{format_timestamp(device.last_sync):<21} {'Yes' if idx == 0 else 'No'}"
            )
    stale = sum(len(group.stale) for group in groups)
    print()
    print(f"{len(groups)} serial number(s) shared by more than one device; {stale} stale record(s).")


class UserAction(str, Enum):
    """Outcome of primary user reconciliation for one device."""

    NO_LOGGED_ON_USER = "NoLoggedOnUser"
    ALREADY_PRIMARY = "AlreadyPrimary"
    WOULD_UPDATE = "WouldUpdate"
    UPDATED = "Updated"
    FAILED = "Failed"


@dataclass(frozen=True)
class PrimaryUserOutcome:
    device: DeviceRecord
    action: UserAction
    current_user_id: str = ""
    last_logged_on_user_id: str = ""
    detail: str = ""


def latest_logged_on_user(entries: Iterable[Dict[str, Any]]) -> str:
    """Return the user id with the most recent ``lastLogOnDateTime``."""

    latest_id = ""
    latest_when: Optional[datetime] = None
    for entry in entries:
        user_id = entry.get("userId")
        if not user_id:
            continue
        when = parse_graph_datetime(entry.get("lastLogOnDateTime")) or _OLDEST
        if latest_when is None or when > latest_when:
            latest_id, latest_when = user_id, when
    return latest_id


def reconcile_primary_user(
    device: DeviceRecord, client: PrimaryUserManager, *, execute: bool = False
) -> PrimaryUserOutcome:
    """Make the most recent logged-on user the primary user of *device*."""

    try:
        last_user = latest_logged_on_user(client.get_logged_on_users(device.id))
        primary = client.get_primary_users(device.id)
    except (GraphError, ValueError) as exc:
        return PrimaryUserOutcome(device=device, action=UserAction.FAILED, detail=str(exc))

    current = primary[0].get("id", "") if primary else ""
    if not last_user:
        return PrimaryUserOutcome(
            device=device, action=UserAction.NO_LOGGED_ON_USER, current_user_id=current
        )
    if current.lower() == last_user.lower():
        return PrimaryUserOutcome(
            device=device,
            action=UserAction.ALREADY_PRIMARY,
            current_user_id=current,
            last_logged_on_user_id=last_user,
        )
    if not execute:
        return PrimaryUserOutcome(
            device=device,
            action=UserAction.WOULD_UPDATE,
            current_user_id=current,
            last_logged_on_user_id=last_user,
        )

    try:
        client.set_primary_user(device.id, last_user)
    except GraphError as exc:
        logger.warning("Failed to set primary user on %s: %s", device.device_name, exc)
        return PrimaryUserOutcome(
            device=device,
            action=UserAction.FAILED,
            current_user_id=current,
            last_logged_on_user_id=last_user,
            detail=str(exc),
        )
    return PrimaryUserOutcome(
        device=device,
        action=UserAction.UPDATED,
        current_user_id=current,
        last_logged_on_user_id=last_user,
    )


def sync_primary_users(
    client: PrimaryUserManager,
    *,
    execute: bool = False,
    name_prefixes: Sequence[str] = (),
) -> List[PrimaryUserOutcome]:
    """Reconcile the primary user of every managed Windows device."""

    filter_expr = "operatingSystem eq 'Windows'"
    prefix_filter = device_name_prefix_filter(name_prefixes)
    if prefix_filter:
        filter_expr = f"{filter_expr} and ({prefix_filter})"
    devices = device_records(client.list_managed_devices(filter_expr))
    return [reconcile_primary_user(device, client, execute=execute) for device in devices]


def primary_user_rows(outcomes: Iterable[PrimaryUserOutcome]) -> List[List[str]]:
    return [
        [
            outcome.device.id,
            outcome.device.device_name,
            outcome.current_user_id,
            outcome.last_logged_on_user_id,
            outcome.action.value,
            outcome.detail,
        ]
        for outcome in outcomes
    ]


def print_primary_user_summary(outcomes: Sequence[PrimaryUserOutcome]) -> None:
    """Print primary user actions grouped by outcome."""

    if not outcomes:
        print("No managed Windows devices matched.")
        return

    counts: Dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.action.value] = counts.get(outcome.action.value, 0) + 1
    header = f"{'Action':<16} Count"
    print(header)
    print("-" * len(header))
    for action in sorted(counts):
        print(f"{action:<16} {counts[action]}")


__all__ = [
    "DUPLICATE_HEADERS",
    "DuplicateGroup",
    "PRIMARY_USER_HEADERS",
    "PrimaryUserOutcome",
    "UserAction",
    "duplicate_rows",
    "find_duplicate_serials",
    "group_duplicate_serials",
    "latest_logged_on_user",
    "normalize_serial",
    "print_duplicates",
    "print_primary_user_summary",
    "primary_user_rows",
    "reconcile_primary_user",
    "sync_primary_users",
]
