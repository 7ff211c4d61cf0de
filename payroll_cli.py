#!/usr/bin/env python3
# /// script
# dependencies = [
#   "requests",
#   "beautifulsoup4",
#   "python-dotenv",
# ]
# ///
"""
myehr Payroll Collector

Logs in to myehr, waits for mobile approval, collects pay details for the
requested years/months and exports them to JSON and CSV.

Usage:
    uv run payroll_cli.py                          # 2023-2025, all months
    uv run payroll_cli.py --years 2024 --months 1-6
    uv run payroll_cli.py --pernr 1234567 --wait-auth 120
    uv run payroll_cli.py --debug                  # HTTP trace to payroll_debug.log
"""

from __future__ import annotations

import argparse
import csv
import functools
import json
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from ehr_client import DEBUG_LOG_FILE, debug_log
from ehr_credentials import get_credentials
from payroll_jobs import (
    STATUS_COMPLETED,
    TERMINAL_STATUSES,
    JobRegistry,
    poll_job,
    run_payroll_job,
    submit_scrape,
)
from payroll_normalizer import TRANSACTION_FIELDS
from payroll_request import (
    DEFAULT_MONTHS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_WAIT_AUTH_SECONDS,
    DEFAULT_YEARS,
    InvalidRequestError,
)

# Seconds between job status polls
STATUS_POLL_SECONDS = 1.0


def export_to_json(snapshot: dict[str, Any], filepath: Path) -> None:
    """Export the completed job's summary and transactions to a JSON file."""
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(
            {
                "exported_at": datetime.now().isoformat(),
                "summary": snapshot.get("summary"),
                "transactions": snapshot.get("transactions", []),
            },
            f,
            indent=2,
            ensure_ascii=False,
        )
    print(f"Exported to JSON: {filepath}")


def export_to_csv(transactions: list[dict[str, Any]], filepath: Path) -> None:
    """Export transactions to CSV; utf-8-sig so spreadsheet apps read Korean labels."""
    with open(filepath, "w", newline="", encoding="utf-8-sig") as f:
        writer = csv.DictWriter(f, fieldnames=TRANSACTION_FIELDS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(transactions)
    print(f"Exported to CSV: {filepath}")


def wait_for_job(registry: JobRegistry, job_id: str, interval: float | None = None) -> dict[str, Any]:
    """Poll the job until it reaches a terminal state, printing each new message."""
    if interval is None:
        interval = STATUS_POLL_SECONDS
    last_message = None
    while True:
        snapshot = poll_job(registry, job_id)
        if snapshot is None:
            raise RuntimeError(f"Job {job_id} disappeared from the registry")

        if snapshot["message"] != last_message:
            last_message = snapshot["message"]
            print(f"  [{snapshot['status']}] {last_message}")

        if snapshot["status"] in TERMINAL_STATUSES:
            return snapshot

        time.sleep(interval)


def print_summary(snapshot: dict[str, Any]) -> None:
    summary = snapshot.get("summary") or {}
    print()
    print("-" * 50)
    print("Payroll Summary")
    print("-" * 50)
    print(f"  Periods processed: {snapshot['processed_months']}/{snapshot['total_months']}")
    print(f"  Transactions: {summary.get('count', 0):,}")
    print(f"  Gross: {summary.get('gross', 0):,}")
    print(f"  Deductions: {summary.get('deductions', 0):,}")
    print(f"  Net: {summary.get('net', 0):,}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="myehr Payroll Collector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--years", default=DEFAULT_YEARS, help=f"Years or ranges (default: {DEFAULT_YEARS})")
    parser.add_argument("--months", default=DEFAULT_MONTHS, help=f"Months or ranges (default: {DEFAULT_MONTHS})")
    parser.add_argument("--pernr", help="Employee number to query (default: login ID)")
    parser.add_argument(
        "--wait-auth",
        type=float,
        default=float(os.environ.get("MYEHR_WAIT_AUTH_SECONDS", DEFAULT_WAIT_AUTH_SECONDS)),
        help="Seconds to wait for mobile approval (default: %(default)s)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=float(os.environ.get("MYEHR_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)),
        help="Seconds between approval checks (default: %(default)s)",
    )
    parser.add_argument("--output-dir", type=Path, default=Path("."), help="Directory for exported files")
    parser.add_argument("--no-export", action="store_true", help="Print the summary only, write no files")
    parser.add_argument("--debug", action="store_true", help=f"Write an HTTP trace to {DEBUG_LOG_FILE}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print per-request progress")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    print("myehr Payroll Collector")
    print("=" * 50)
    print()

    try:
        username, password = get_credentials(verbose=True)
    except (RuntimeError, ValueError) as e:
        print(f"\nCould not get credentials: {e}")
        return 1

    payload = {
        "username": username,
        "password": password,
        "pernr": args.pernr,
        "years": args.years,
        "months": args.months,
        "wait_auth_seconds": args.wait_auth,
        "poll_interval_seconds": args.poll_interval,
    }

    if args.debug:
        debug_log.enable()
        print(f"  Debug logging enabled: {DEBUG_LOG_FILE}")

    registry = JobRegistry(runner=functools.partial(run_payroll_job, verbose=args.verbose))

    try:
        try:
            job = submit_scrape(registry, payload)
        except InvalidRequestError as e:
            print(f"\nInvalid request: {e}")
            return 1

        print(f"Started job {job['id']} ({job['total_months']} periods)")
        snapshot = wait_for_job(registry, job["id"])

        if snapshot["status"] != STATUS_COMPLETED:
            print(f"\nCollection failed: {snapshot.get('error') or snapshot['message']}")
            return 1

        print_summary(snapshot)

        if not args.no_export:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            args.output_dir.mkdir(parents=True, exist_ok=True)
            print()
            print("Exporting data...")
            export_to_json(snapshot, args.output_dir / f"payroll_{timestamp}.json")
            export_to_csv(snapshot["transactions"], args.output_dir / f"payroll_{timestamp}.csv")

        print()
        print("Done!")
        return 0

    except KeyboardInterrupt:
        print("\n\nInterrupted by user.")
        return 130
    finally:
        if args.debug:
            debug_log.disable()
            print(f"  Debug log written to: {DEBUG_LOG_FILE}")


if __name__ == "__main__":
    sys.exit(main())
