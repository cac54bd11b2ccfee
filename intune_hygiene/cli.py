"""Command line interface for the Intune device hygiene toolkit."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .core import (
    REPORT_HEADERS,
    default_report_path,
    export_outcomes_to_excel,
    export_rows_to_excel,
    outcome_rows,
    print_summary,
    run_bulk_delete,
    utc_now,
    write_csv_report,
)
from .graph import DEFAULT_TIMEOUT, GraphClient, GraphError
from .hygiene import (
    DUPLICATE_HEADERS,
    PRIMARY_USER_HEADERS,
    duplicate_rows,
    find_duplicate_serials,
    primary_user_rows,
    print_duplicates,
    print_primary_user_summary,
    sync_primary_users,
)
from .loader import EmptyInputError, load_identifiers
from .models import GuardrailConfigError, GuardrailContext
from .utils import timestamped_report_path

DEFAULT_STALE_DAYS = 90
# Placeholder only; every deployment must pass its own naming prefixes.
DEFAULT_ALLOWED_PREFIXES = ["CHANGE-ME-"]

ClientFactory = Callable[[argparse.Namespace], GraphClient]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Return parsed command line arguments."""

    parser = argparse.ArgumentParser(
        description="Intune device hygiene: guarded deletion, duplicate serials and primary users."
    )
    parser.add_argument("--tenant-id", help="Entra ID tenant (defaults to AZURE_TENANT_ID)", default=None)
    parser.add_argument(
        "--client-id",
        help="App registration client id (defaults to GRAPH_CLIENT_ID or the Graph PowerShell app)",
        default=None,
    )
    parser.add_argument(
        "--device-code",
        action="store_true",
        help="Sign in with a device code instead of opening a browser",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Timeout in seconds for each Graph request",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    delete = subparsers.add_parser(
        "delete", help="Delete stale Intune devices listed in a file (WhatIf unless --execute)"
    )
    delete.add_argument("path", help="File with one Intune managed device id per line")
    delete.add_argument(
        "--stale-days",
        type=int,
        default=DEFAULT_STALE_DAYS,
        help="Only delete devices whose last sync is older than this many days",
    )
    delete.add_argument(
        "--allowed-name-prefixes",
        nargs="+",
        default=list(DEFAULT_ALLOWED_PREFIXES),
        help="Device name prefixes that may be deleted (case-sensitive)",
    )
    delete.add_argument("--execute", action="store_true", help="Actually delete devices")
    delete.add_argument("--output", dest="output_path", help="CSV report path (default: timestamped beside the input)")
    delete.add_argument("--excel", dest="excel_path", help="Optional path to also export the report as .xlsx")

    duplicates = subparsers.add_parser(
        "duplicates", help="Report managed devices that share a serial number"
    )
    duplicates.add_argument("--output", dest="output_path", help="CSV report path (default: timestamped in the current directory)")
    duplicates.add_argument("--excel", dest="excel_path", help="Optional path to also export the report as .xlsx")

    primary = subparsers.add_parser(
        "primary-user", help="Set each Windows device's primary user to its last logged-on user"
    )
    primary.add_argument(
        "--name-prefixes",
        nargs="*",
        default=[],
        help="Limit to devices whose name starts with one of these prefixes",
    )
    primary.add_argument("--execute", action="store_true", help="Actually update primary users")
    primary.add_argument("--output", dest="output_path", help="CSV report path (default: timestamped in the current directory)")

    return parser.parse_args(argv)


def _sign_in(args: argparse.Namespace) -> GraphClient:
    return GraphClient.sign_in(
        args.tenant_id,
        args.client_id,
        device_code=args.device_code,
        timeout=args.timeout,
    )


def _run_delete(args: argparse.Namespace, client_factory: ClientFactory) -> int:
    identifiers = load_identifiers(args.path)
    context = GuardrailContext(
        allowed_prefixes=tuple(args.allowed_name_prefixes),
        stale_days=args.stale_days,
        now=utc_now(),
        execute=args.execute,
    )
    print(f"Loaded {len(identifiers)} device id(s) from {args.path}")

    with client_factory(args) as client:
        run = run_bulk_delete(identifiers, client, context)

    report_path = Path(args.output_path) if args.output_path else default_report_path(args.path)
    report_path = write_csv_report(outcome_rows(run.outcomes), REPORT_HEADERS, report_path)
    print_summary(run)
    print()
    print(f"Report written to {report_path}")

    if args.excel_path:
        try:
            path = export_outcomes_to_excel(run.outcomes, args.excel_path)
        except OSError as exc:
            print(f"Failed to export Excel report: {exc}", file=sys.stderr)
        else:
            print(f"Excel report written to {path}")
    return 0


def _run_duplicates(args: argparse.Namespace, client_factory: ClientFactory) -> int:
    with client_factory(args) as client:
        groups = find_duplicate_serials(client)

    print_duplicates(groups)
    rows = duplicate_rows(groups)
    report_path = Path(args.output_path) if args.output_path else timestamped_report_path(
        Path.cwd(), "DuplicateSerialReport", datetime.now()
    )
    report_path = write_csv_report(rows, DUPLICATE_HEADERS, report_path)
    print(f"Report written to {report_path}")

    if args.excel_path:
        try:
            path = export_rows_to_excel(
                rows, DUPLICATE_HEADERS, args.excel_path, sheet_title="Duplicates"
            )
        except OSError as exc:
            print(f"Failed to export Excel report: {exc}", file=sys.stderr)
        else:
            print(f"Excel report written to {path}")
    return 0


def _run_primary_user(args: argparse.Namespace, client_factory: ClientFactory) -> int:
    with client_factory(args) as client:
        outcomes = sync_primary_users(
            client, execute=args.execute, name_prefixes=args.name_prefixes
        )

    print(f"Mode: {'EXECUTE' if args.execute else 'WhatIf'}")
    print_primary_user_summary(outcomes)
    report_path = Path(args.output_path) if args.output_path else timestamped_report_path(
        Path.cwd(), "PrimaryUserReport", datetime.now()
    )
    report_path = write_csv_report(primary_user_rows(outcomes), PRIMARY_USER_HEADERS, report_path)
    print(f"Report written to {report_path}")
    return 0


COMMANDS = {
    "delete": _run_delete,
    "duplicates": _run_duplicates,
    "primary-user": _run_primary_user,
}


def main(
    argv: Optional[List[str]] = None, client_factory: ClientFactory = _sign_in
) -> int:
    """CLI entry point used by ``python -m intune_hygiene``."""

    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return COMMANDS[args.command](args, client_factory)
    except (FileNotFoundError, EmptyInputError, GuardrailConfigError, GraphError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


__all__ = ["main", "parse_args"]
