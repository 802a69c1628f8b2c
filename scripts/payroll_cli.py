#!/usr/bin/env python3
"""
Operator CLI for the coaching payroll core.

Runs the same operations the host application triggers, against a database
URL, so operators can force a rollover, recompute one employee, run the
period-format migration or inspect stored salaries.

Usage:
    python3 scripts/payroll_cli.py rollover
    python3 scripts/payroll_cli.py recalculate <employee_id>
    python3 scripts/payroll_cli.py migrate
    python3 scripts/payroll_cli.py periods
    python3 scripts/payroll_cli.py report "January 2024"

    --database-url defaults to $DATABASE_URL.  --create-tables creates any
    missing payroll and directory tables first (handy for a fresh SQLite
    file).

Exit code 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from decimal import Decimal
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from payroll_config import get_active_config  # noqa: E402
from payroll_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session,
    init_engine_from_url,
)
from payroll_kernel.domain.period import PeriodKey  # noqa: E402
from payroll_kernel.exceptions import InvalidPeriodKeyError  # noqa: E402
from payroll_kernel.logging_config import configure_logging  # noqa: E402
from payroll_services.compensation_service import CompensationService  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Coaching payroll operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="SQLAlchemy database URL (default: $DATABASE_URL)",
    )
    parser.add_argument(
        "--config-set",
        default="default",
        help="Compensation configuration set name (default: default)",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running the command",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("rollover", help="Compute this period's salaries if not done yet")
    recalc = sub.add_parser("recalculate", help="Recompute one employee for this period")
    recalc.add_argument("employee_id")
    sub.add_parser("migrate", help="Normalize period keys and merge duplicates")
    sub.add_parser("periods", help="List periods present in the ledger")
    report = sub.add_parser("report", help="Print the salaries of one period")
    report.add_argument("period", help='e.g. "January 2024" or 2024-01')
    return parser


def print_report(service: CompensationService, period: str) -> None:
    records = service.list_salaries_for_period(period)
    print(f"Salaries for {period} ({len(records)} employees)")
    print("-" * 78)
    print(f"{'Employee':<28}{'Role':<12}{'Base':>12}{'Deductions':>13}{'Final':>13}")
    total = Decimal("0")
    for r in records:
        name = r.employee_name or r.employee_id
        print(
            f"{name[:27]:<28}{r.role.value:<12}{r.relevant_base:>12.2f}"
            f"{r.deduction_amount:>13.2f}{r.final_salary:>13.2f}"
        )
        total += r.final_salary
    print("-" * 78)
    print(f"{'Total':<65}{total:>13.2f}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.database_url:
        print("ERROR: no database URL (use --database-url or set DATABASE_URL)", file=sys.stderr)
        return 1

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = get_active_config(args.config_set)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.command == "report":
        try:
            period = PeriodKey.parse(args.period).canonical
        except InvalidPeriodKeyError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    try:
        init_engine_from_url(args.database_url)
        if args.create_tables:
            create_tables()
    except Exception as exc:
        print(f"ERROR: Could not connect: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        service = CompensationService(session, config=config)

        if args.command == "rollover":
            ok = service.trigger_rollover_if_needed()
            result = service.last_rollover
            if result is not None:
                print(
                    f"{result.period_key}: {result.status.value} "
                    f"({result.succeeded}/{result.total} employees, "
                    f"{result.failed} failed, {result.attendance_reset} attendance reset)"
                )
            return 0 if ok else 1

        if args.command == "recalculate":
            ok = service.recalculate_for_employee(args.employee_id)
            print(f"{args.employee_id}: {'recalculated' if ok else 'FAILED'}")
            return 0 if ok else 1

        if args.command == "migrate":
            ok = service.migrate_period_formats()
            result = service.last_reconciliation
            if result is not None:
                print(
                    f"scanned {result.records_scanned}, migrated {result.migrated}, "
                    f"merged {result.merged_groups} groups, deleted {result.deleted}"
                )
                for key in result.unparseable:
                    print(f"  unparseable period left unchanged: {key!r}")
                for group in result.failed_groups:
                    print(f"  FAILED group: {group}")
            return 0 if ok else 1

        if args.command == "periods":
            for p in service.list_available_periods():
                print(p)
            return 0

        print_report(service, period)
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
