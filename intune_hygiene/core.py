"""Core orchestration for guarded bulk deletion of Intune devices."""
from __future__ import annotations

import csv
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Union

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .graph import GraphError
from .guardrails import Candidate, DeviceLookup, evaluate_identifier
from .models import Action, GuardrailContext, OutcomeRecord, Reason
from .utils import format_timestamp, numbered_paths, timestamped_report_path

logger = logging.getLogger(__name__)

REPORT_PREFIX = "DeviceDeleteReport"
REPORT_HEADERS = (
    "InputId",
    "DeviceName",
    "SerialNumber",
    "LastSyncDateTime",
    "AzureADDeviceId",
    "UserPrincipalName",
    "Action",
    "Reason",
    "Detail",
)
RISKIEST_LIMIT = 10
EXCEL_TIMESTAMP_FORMAT = "yyyy-mm-dd hh:mm:ss"
HEADER_FONT = Font(bold=True)


class DeviceManager(DeviceLookup, Protocol):
    def delete_managed_device(self, device_id: str) -> None:
        ...


@dataclass
class DeletionRun:
    """Outcomes of one bulk deletion run in input order."""

    context: GuardrailContext
    outcomes: List[OutcomeRecord]

    def action_counts(self) -> Dict[str, int]:
        """Return outcome counts keyed by action name, sorted by name."""

        counts = Counter(outcome.action.value for outcome in self.outcomes)
        return dict(sorted(counts.items()))

    def oldest_removals(self, limit: int = RISKIEST_LIMIT) -> List[OutcomeRecord]:
        """Return deleted or would-delete records with the oldest last sync."""

        removals = [
            outcome
            for outcome in self.outcomes
            if outcome.action in (Action.WOULD_DELETE, Action.DELETED)
            and outcome.last_sync is not None
        ]
        removals.sort(key=lambda outcome: outcome.last_sync)
        return removals[:limit]


def execute_candidate(
    candidate: Candidate, client: DeviceManager, context: GuardrailContext
) -> OutcomeRecord:
    """Simulate or perform the deletion of a device that passed guardrails."""

    if not context.execute:
        return OutcomeRecord(
            identifier=candidate.identifier,
            action=Action.WOULD_DELETE,
            reason=Reason.PASSED_WHATIF,
            device=candidate.device,
        )

    try:
        client.delete_managed_device(candidate.device.id or candidate.identifier)
    except GraphError as exc:
        logger.warning("Failed to delete %s: %s", candidate.identifier, exc)
        return OutcomeRecord(
            identifier=candidate.identifier,
            action=Action.FAILED,
            reason=Reason.DELETE_FAILED,
            device=candidate.device,
            detail=str(exc),
        )

    logger.info("Deleted %s (%s)", candidate.identifier, candidate.device.device_name)
    return OutcomeRecord(
        identifier=candidate.identifier,
        action=Action.DELETED,
        reason=Reason.PASSED,
        device=candidate.device,
    )


def run_bulk_delete(
    identifiers: Iterable[str], client: DeviceManager, context: GuardrailContext
) -> DeletionRun:
    """Evaluate every identifier in order and return one outcome for each."""

    outcomes: List[OutcomeRecord] = []
    for identifier in identifiers:
        decision = evaluate_identifier(identifier, client, context)
        if isinstance(decision, Candidate):
            decision = execute_candidate(decision, client, context)
        outcomes.append(decision)
    return DeletionRun(context=context, outcomes=outcomes)


def outcome_rows(outcomes: Iterable[OutcomeRecord]) -> List[List[str]]:
    """Flatten outcomes into report rows matching :data:`REPORT_HEADERS`."""

    rows: List[List[str]] = []
    for outcome in outcomes:
        device = outcome.device
        rows.append(
            [
                outcome.identifier,
                device.device_name if device else "",
                device.serial_number if device else "",
                format_timestamp(outcome.last_sync),
                device.azure_ad_device_id if device else "",
                device.user_principal_name if device else "",
                outcome.action.value,
                outcome.reason_text,
                outcome.detail,
            ]
        )
    return rows


def default_report_path(
    input_path: Union[str, Path], when: Optional[datetime] = None
) -> Path:
    """Return the timestamped report path beside *input_path*."""

    when = when or datetime.now()
    return timestamped_report_path(Path(input_path).resolve().parent, REPORT_PREFIX, when)


def write_csv_report(
    rows: Iterable[Sequence[object]], headers: Sequence[str], path: Union[str, Path]
) -> Path:
    """Write ``rows`` with ``headers`` to a new UTF-8 CSV file.

    Existing files are never overwritten: when *path* is taken the report is
    written to the first free ``<stem>_<n><suffix>`` beside it. Returns the
    path actually written.
    """

    candidates = numbered_paths(Path(path))
    while True:
        target = next(candidates)
        try:
            fh = target.open("x", encoding="utf-8", newline="")
        except FileExistsError:
            continue
        with fh:
            writer = csv.writer(fh)
            writer.writerow(headers)
            writer.writerows(rows)
        return target


def _excel_value(value: object) -> object:
    # Excel cells cannot hold timezone-aware datetimes.
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def export_rows_to_excel(
    rows: Iterable[Sequence[object]],
    headers: Sequence[str],
    path: Union[str, Path],
    *,
    sheet_title: str,
) -> Path:
    """Write ``rows`` to a filterable worksheet with a frozen header row.

    ``datetime`` values are stored as real Excel dates (UTC) so auditors can
    sort and filter on last sync times.
    """

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title

    sheet.append(list(headers))
    for cell in sheet[1]:
        cell.font = HEADER_FONT
    widths = [len(header) for header in headers]

    for row in rows:
        sheet.append([_excel_value(value) for value in row])
        for idx, cell in enumerate(sheet[sheet.max_row]):
            if isinstance(cell.value, datetime):
                cell.number_format = EXCEL_TIMESTAMP_FORMAT
                length = len(EXCEL_TIMESTAMP_FORMAT)
            else:
                length = len(str(cell.value or ""))
            widths[idx] = max(widths[idx], length)

    sheet.freeze_panes = "A2"
    sheet.auto_filter.ref = sheet.dimensions
    for idx, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(idx)].width = min(width + 2, 60)

    target = Path(path)
    workbook.save(str(target))
    return target


def export_outcomes_to_excel(outcomes: Iterable[OutcomeRecord], path: Union[str, Path]) -> Path:
    """Write deletion *outcomes* to an Excel workbook located at *path*."""

    outcomes = list(outcomes)
    rows = []
    for outcome, row in zip(outcomes, outcome_rows(outcomes)):
        row = list(row)
        row[REPORT_HEADERS.index("LastSyncDateTime")] = outcome.last_sync
        rows.append(row)
    return export_rows_to_excel(rows, REPORT_HEADERS, path, sheet_title="Deletions")


def print_summary(run: DeletionRun) -> None:
    """Print per-action counts and the oldest devices removed (or to remove)."""

    mode = "EXECUTE" if run.context.execute else "WhatIf"
    print(
        f"Mode: {mode}  StaleDays: {run.context.stale_days}  "
        f"Cutoff: {format_timestamp(run.context.cutoff)}  "
        f"AllowedPrefixes: {', '.join(run.context.allowed_prefixes)}"
    )
    print()

    header = f"{'Action':<12} Count"
    print(header)
    print("-" * len(header))
    for action, count in run.action_counts().items():
        print(f"{action:<12} {count}")

    oldest = run.oldest_removals()
    if not oldest:
        return

    print()
    header = f"{'DeviceName':<24} {'SerialNumber':<20} {'LastSyncDateTime':<21} Action"
    print(header)
    print("-" * len(header))
    for outcome in oldest:
        device = outcome.device
        name = device.device_name if device else ""
        serial = device.serial_number if device else ""
        print(
            f"{name[:24]:<24} {serial[:20]:<20} "
            f"{format_timestamp(outcome.last_sync):<21} {outcome.action.value}"
        )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "DeletionRun",
    "REPORT_HEADERS",
    "default_report_path",
    "execute_candidate",
    "export_outcomes_to_excel",
    "export_rows_to_excel",
    "outcome_rows",
    "print_summary",
    "run_bulk_delete",
    "utc_now",
    "write_csv_report",
]
