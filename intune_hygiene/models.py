"""Data models for Intune device hygiene runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from .utils import parse_graph_datetime


class Action(str, Enum):
    """Terminal classification recorded for each input identifier."""

    SKIPPED = "Skipped"
    WOULD_DELETE = "WouldDelete"
    DELETED = "Deleted"
    FAILED = "Failed"


class Reason(str, Enum):
    """Closed set of reasons attached to an :class:`Action`."""

    INVALID_GUID = "Invalid GUID format"
    NOT_FOUND = "Not found in Intune (or no access)"
    NAME_NOT_ALLOWED = "DeviceName not allowed (prefix guardrail)"
    LAST_SYNC_NULL = "LastSyncDateTime is null (stale guardrail cannot evaluate)"
    NOT_STALE = "Device is not stale (LastSync newer than cutoff)"
    PASSED_WHATIF = "Passed guardrails (WhatIf mode)"
    PASSED = "Passed guardrails"
    DELETE_FAILED = "Delete failed"


@dataclass(frozen=True)
class DeviceRecord:
    """Read snapshot of an Intune managed device."""

    id: str
    device_name: str = ""
    serial_number: str = ""
    last_sync: Optional[datetime] = None
    azure_ad_device_id: str = ""
    user_principal_name: str = ""
    user_id: str = ""
    operating_system: str = ""

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> "DeviceRecord":
        """Build a record from a Graph ``managedDevice`` resource.

        Raises :class:`ValueError` when the payload is not an object or carries
        an unparseable ``lastSyncDateTime``.
        """

        if not isinstance(payload, Mapping):
            raise ValueError(f"Expected a managedDevice object, got {type(payload).__name__}")
        return cls(
            id=payload.get("id") or "",
            device_name=payload.get("deviceName") or "",
            serial_number=payload.get("serialNumber") or "",
            last_sync=parse_graph_datetime(payload.get("lastSyncDateTime")),
            azure_ad_device_id=payload.get("azureADDeviceId") or "",
            user_principal_name=payload.get("userPrincipalName") or "",
            user_id=payload.get("userId") or "",
            operating_system=payload.get("operatingSystem") or "",
        )


class GuardrailConfigError(ValueError):
    """Raised when a deletion run is configured with unusable guardrails."""


@dataclass(frozen=True)
class GuardrailContext:
    """Immutable policy applied to every identifier in a deletion run."""

    allowed_prefixes: Tuple[str, ...]
    stale_days: int
    now: datetime
    execute: bool = False

    def __post_init__(self) -> None:
        if self.stale_days < 0:
            raise GuardrailConfigError("stale_days must be zero or greater")
        prefixes = tuple(prefix for prefix in self.allowed_prefixes if prefix)
        if not prefixes:
            raise GuardrailConfigError("At least one allowed device name prefix is required")
        object.__setattr__(self, "allowed_prefixes", prefixes)

    @property
    def cutoff(self) -> datetime:
        return self.now - timedelta(days=self.stale_days)


@dataclass(frozen=True)
class OutcomeRecord:
    """One audit row describing what happened to an input identifier."""

    identifier: str
    action: Action
    reason: Reason
    device: Optional[DeviceRecord] = None
    detail: str = field(default="")

    @property
    def reason_text(self) -> str:
        """Human-readable reason, embedding the error text for failures."""

        if self.action is Action.FAILED and self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value

    @property
    def last_sync(self) -> Optional[datetime]:
        return self.device.last_sync if self.device else None


__all__ = [
    "Action",
    "DeviceRecord",
    "GuardrailConfigError",
    "GuardrailContext",
    "OutcomeRecord",
    "Reason",
]
