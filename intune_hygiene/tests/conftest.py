"""Shared fixtures: an in-memory stand-in for the Graph client."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from intune_hygiene.graph import GraphError


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def graph_device(
    device_id: str,
    name: str,
    *,
    days_since_sync: Optional[int] = 200,
    serial: str = "SN-1",
    **extra: Any,
) -> Dict[str, Any]:
    """Return a ``managedDevice`` payload as Graph would serialise it."""

    if days_since_sync is None:
        last_sync = "0001-01-01T00:00:00Z"
    else:
        last_sync = (NOW - timedelta(days=days_since_sync)).strftime("%Y-%m-%dT%H:%M:%SZ")
    payload = {
        "id": device_id,
        "deviceName": name,
        "serialNumber": serial,
        "lastSyncDateTime": last_sync,
        "azureADDeviceId": f"aad-{device_id[:8]}",
        "userPrincipalName": "user@example.com",
        "userId": "user-1",
        "operatingSystem": "Windows",
    }
    payload.update(extra)
    return payload


class FakeGraphClient:
    """Records calls and serves devices from a dictionary."""

    def __init__(
        self,
        devices: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        delete_errors: Optional[Dict[str, GraphError]] = None,
        logged_on: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        primary_users: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        set_primary_errors: Optional[Dict[str, GraphError]] = None,
    ) -> None:
        self.devices = dict(devices or {})
        self.delete_errors = dict(delete_errors or {})
        self.logged_on = dict(logged_on or {})
        self.primary_users = dict(primary_users or {})
        self.set_primary_errors = dict(set_primary_errors or {})
        self.lookups: List[str] = []
        self.deleted: List[str] = []
        self.primary_updates: List[tuple] = []
        self.filters: List[Optional[str]] = []
        self.closed = False

    def __enter__(self) -> "FakeGraphClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.closed = True

    def get_managed_device(self, device_id: str) -> Dict[str, Any]:
        self.lookups.append(device_id)
        try:
            return self.devices[device_id]
        except KeyError:
            raise GraphError("ResourceNotFound: not found", status_code=404) from None

    def delete_managed_device(self, device_id: str) -> None:
        if device_id in self.delete_errors:
            raise self.delete_errors[device_id]
        self.deleted.append(device_id)

    def list_managed_devices(self, filter_expr: Optional[str] = None) -> List[Dict[str, Any]]:
        self.filters.append(filter_expr)
        return list(self.devices.values())

    def get_logged_on_users(self, device_id: str) -> List[Dict[str, Any]]:
        return self.logged_on.get(device_id, [])

    def get_primary_users(self, device_id: str) -> List[Dict[str, Any]]:
        return self.primary_users.get(device_id, [])

    def set_primary_user(self, device_id: str, user_id: str) -> None:
        if device_id in self.set_primary_errors:
            raise self.set_primary_errors[device_id]
        self.primary_updates.append((device_id, user_id))


@pytest.fixture
def make_client() -> Callable[..., FakeGraphClient]:
    return FakeGraphClient


@pytest.fixture
def make_device() -> Callable[..., Dict[str, Any]]:
    return graph_device


@pytest.fixture
def now() -> datetime:
    return NOW
