"""Intune device hygiene toolkit."""

from __future__ import annotations

from .core import DeletionRun, print_summary, run_bulk_delete
from .graph import GraphClient, GraphError
from .guardrails import evaluate_identifier
from .hygiene import find_duplicate_serials, sync_primary_users
from .loader import EmptyInputError, load_identifiers
from .models import Action, DeviceRecord, GuardrailContext, OutcomeRecord, Reason

__all__ = [
    "Action",
    "DeletionRun",
    "DeviceRecord",
    "EmptyInputError",
    "GraphClient",
    "GraphError",
    "GuardrailContext",
    "OutcomeRecord",
    "Reason",
    "evaluate_identifier",
    "find_duplicate_serials",
    "load_identifiers",
    "print_summary",
    "run_bulk_delete",
    "sync_primary_users",
]
