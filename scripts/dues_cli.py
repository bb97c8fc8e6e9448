#!/usr/bin/env python3
"""
Dues CLI: the external trigger for late-fee sweeps, scheduled installment
charges and obligation exports.  Nothing in the engine runs on a timer;
schedule this script (cron, CI job, ...) instead.

Usage:
    python3 scripts/dues_cli.py [--db-url URL] <command> [options]

Examples:
    # Assess late fees for a configuration as of today
    python3 scripts/dues_cli.py sweep-late-fees --configuration-id <uuid>

    # Charge every installment due on or before a date
    python3 scripts/dues_cli.py charge-installments --as-of 2024-10-01 \\
        --processor mypkg.stripe_adapter:StripePaymentProcessor

    # Export a configuration's obligations to CSV
    python3 scripts/dues_cli.py export --configuration-id <uuid> --output dues.csv
"""

from __future__ import annotations

import argparse
import csv
import importlib
import os
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("DATABASE_URL", "sqlite:///dues.db")
DEFAULT_PROCESSOR = "dues_services.processor:InMemoryPaymentProcessor"

EXPORT_COLUMNS = (
    "obligation_id",
    "member_name",
    "member_email",
    "cohort",
    "base_amount",
    "late_fee",
    "adjustment",
    "total_amount",
    "amount_paid",
    "balance",
    "status",
    "due_date",
    "paid_date",
    "days_overdue",
)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Dues lifecycle maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        default=DB_URL,
        help=f"Database URL (default: DATABASE_URL env or {DB_URL!r}).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Log level for the JSON log stream on stderr (default: INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep-late-fees", help="Assess late fees on overdue obligations.")
    sweep.add_argument("--configuration-id", required=True, type=UUID)
    sweep.add_argument("--as-of", type=date.fromisoformat, default=None, help="YYYY-MM-DD. Default: today.")

    charge = sub.add_parser("charge-installments", help="Charge scheduled installments that are due.")
    charge.add_argument("--as-of", type=date.fromisoformat, default=None, help="YYYY-MM-DD. Default: today.")
    charge.add_argument(
        "--processor",
        default=DEFAULT_PROCESSOR,
        help=f"module:Class of the PaymentProcessor implementation (default: {DEFAULT_PROCESSOR}).",
    )

    export = sub.add_parser("export", help="Write a configuration's obligations as CSV.")
    export.add_argument("--configuration-id", required=True, type=UUID)
    export.add_argument("--as-of", type=date.fromisoformat, default=None, help="YYYY-MM-DD. Default: today.")
    export.add_argument("--output", type=Path, default=None, help="CSV path (default: stdout).")

    return parser.parse_args(argv)


def _load_processor(spec: str):
    module_name, _, class_name = spec.partition(":")
    if not class_name:
        raise ValueError(f"Processor must be given as module:Class, got {spec!r}")
    return getattr(importlib.import_module(module_name), class_name)()


def _print_error(result) -> int:
    error = result.error or {}
    print(f"ERROR [{error.get('code')}]: {error.get('message')}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from dues_kernel.db.engine import init_engine_from_url
    from dues_kernel.logging_config import configure_logging
    from dues_modules._orm_registry import create_all_tables
    from dues_services.operations import DuesOperations

    configure_logging(level=args.log_level)
    try:
        init_engine_from_url(args.db_url)
        create_all_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    processor = _load_processor(getattr(args, "processor", DEFAULT_PROCESSOR))
    ops = DuesOperations(processor=processor)

    if args.command == "sweep-late-fees":
        result = ops.sweep_late_fees(args.configuration_id, args.as_of)
        if not result.success:
            return _print_error(result)
        sweep = result.data
        print(f"Applied: {sweep.applied}, skipped: {sweep.skipped}, total fees: {sweep.total_fees}")
        return 0

    if args.command == "charge-installments":
        result = ops.charge_due_installments(args.as_of)
        if not result.success:
            return _print_error(result)
        run = result.data
        print(f"Charged: {run.charged}, pending: {run.pending}, failed: {run.failed}")
        for failure in run.failures:
            print(f"  {failure.installment_payment_id}: [{failure.code}] {failure.message}")
        return 0 if not run.failures else 2

    result = ops.export_obligations(args.configuration_id, args.as_of)
    if not result.success:
        return _print_error(result)
    rows = [summary.as_row() for summary in result.data]
    if args.output is not None:
        with args.output.open("w", newline="", encoding="utf-8") as fh:
            _write_csv(fh, rows)
        print(f"Wrote {len(rows)} rows to {args.output}")
    else:
        _write_csv(sys.stdout, rows)
    return 0


def _write_csv(fh, rows: list[dict[str, str]]) -> None:
    writer = csv.DictWriter(fh, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)


if __name__ == "__main__":
    sys.exit(main())
