"""Guardrail checks that must pass before a device may be deleted."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Protocol, Union

from .graph import GraphError
from .models import Action, DeviceRecord, GuardrailContext, OutcomeRecord, Reason

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class DeviceLookup(Protocol):
    def get_managed_device(self, device_id: str) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class Candidate:
    """A device that passed every guardrail and may be acted on."""

    identifier: str
    device: DeviceRecord


def is_guid(value: str) -> bool:
    """Return ``True`` when *value* is a canonical 8-4-4-4-12 GUID."""

    return bool(GUID_PATTERN.fullmatch(value))


def _skipped(
    identifier: str, reason: Reason, device: DeviceRecord | None = None, detail: str = ""
) -> OutcomeRecord:
    logger.debug("Skipping %s: %s", identifier, reason.value)
    return OutcomeRecord(
        identifier=identifier,
        action=Action.SKIPPED,
        reason=reason,
        device=device,
        detail=detail,
    )


def evaluate_identifier(
    identifier: str, client: DeviceLookup, context: GuardrailContext
) -> Union[OutcomeRecord, Candidate]:
    """Run the guardrails for *identifier*, stopping at the first failure.

    The checks run in a fixed order: GUID format, existence in Intune,
    device name prefix, presence of a last sync time and finally staleness.
    A failing check yields a ``Skipped`` :class:`OutcomeRecord`; a device that
    passes every check is returned as a :class:`Candidate`.
    """

    if not is_guid(identifier):
        return _skipped(identifier, Reason.INVALID_GUID)

    try:
        device = DeviceRecord.from_graph(client.get_managed_device(identifier))
    except GraphError as exc:
        return _skipped(identifier, Reason.NOT_FOUND, detail=str(exc))
    except ValueError as exc:
        return _skipped(identifier, Reason.NOT_FOUND, detail=f"Unreadable device record: {exc}")

    if not any(device.device_name.startswith(prefix) for prefix in context.allowed_prefixes):
        return _skipped(identifier, Reason.NAME_NOT_ALLOWED, device)

    if device.last_sync is None:
        return _skipped(identifier, Reason.LAST_SYNC_NULL, device)

    if not device.last_sync < context.cutoff:
        return _skipped(identifier, Reason.NOT_STALE, device)

    return Candidate(identifier=identifier, device=device)


__all__ = ["Candidate", "DeviceLookup", "GUID_PATTERN", "evaluate_identifier", "is_guid"]
