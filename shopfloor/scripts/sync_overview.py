#!/usr/bin/env python3
"""Remote dataset overview and integrity checks for ShopFloor."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from shopfloor.services.booking_service import valid_dates
from shopfloor.services.custody_service import find_double_custody
from shopfloor.services.errors import PayloadParseError, RemoteError
from shopfloor.services.normalize_service import RemoteDataset, dates_in_range, normalize_dataset
from shopfloor.services.remote_backend_service import RemoteBackendClient


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _run_integrity_checks(dataset: RemoteDataset) -> list[CheckResult]:
    checks: list[CheckResult] = []

    checks.append(CheckResult("records:skipped", dataset.skipped == 0, f"count={dataset.skipped}"))

    bad_ranges = [booking.id for booking in dataset.bookings if booking.endDate < booking.startDate]
    checks.append(CheckResult("bookings:date_range", not bad_ranges, f"count={len(bad_ranges)} ids={bad_ranges[:10]}"))

    bad_times = [booking.id for booking in dataset.bookings if booking.endTime <= booking.startTime]
    checks.append(CheckResult("bookings:time_range", not bad_times, f"count={len(bad_times)} ids={bad_times[:10]}"))

    stray_exclusions = [
        booking.id
        for booking in dataset.bookings
        if not set(booking.excludedDates) <= set(dates_in_range(booking.startDate, booking.endDate))
    ]
    checks.append(
        CheckResult(
            "bookings:excluded_dates_in_range",
            not stray_exclusions,
            f"count={len(stray_exclusions)} ids={stray_exclusions[:10]}",
        )
    )

    # Informational: bookings with every date cancelled still occupy a row remotely.
    empty = [booking.id for booking in dataset.bookings if not valid_dates(booking)]
    checks.append(CheckResult("bookings:fully_excluded", True, f"count={len(empty)}"))

    stray_returns = [
        session.id for session in dataset.sessions if not set(session.returnedItems) <= set(session.items)
    ]
    checks.append(
        CheckResult(
            "sessions:returned_items_in_items",
            not stray_returns,
            f"count={len(stray_returns)} ids={stray_returns[:10]}",
        )
    )

    double = find_double_custody(dataset.sessions)
    checks.append(CheckResult("sessions:single_custody", not double, f"items={sorted(double)}"))

    unparsed = [entry.id for entry in dataset.history if not entry.items]
    checks.append(
        CheckResult("history:status_blob_parsed", not unparsed, f"count={len(unparsed)} ids={unparsed[:10]}")
    )
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_counts(dataset: RemoteDataset) -> None:
    _print_section("Record Counts")
    print(f"venues: {len(dataset.bookings)}")
    print(f"resourceSessions: {len(dataset.sessions)}")
    print(f"resourceHistory: {len(dataset.history)}")


def _print_samples(dataset: RemoteDataset, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    print("venues (first):")
    for booking in dataset.bookings[:sample_size]:
        print(f"  - {(booking.id, booking.venue, str(booking.startDate), str(booking.endDate), booking.startTime, booking.endTime)}")
    print("resourceHistory (newest):")
    for entry in dataset.history[:sample_size]:
        print(f"  - {(entry.id, entry.sessionId, entry.returner, entry.returnTime, sorted(entry.items))}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="ShopFloor remote dataset overview")
    parser.add_argument("--url", default=os.environ.get("REMOTE_API_URL", ""))
    parser.add_argument("--timeout", type=float, default=30.0)
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)

    url = (args.url or "").strip()
    if not url:
        print("REMOTE_API_URL is not set. Provide --url or export env first.")
        return 2

    try:
        payload = RemoteBackendClient(base_url=url, timeout=args.timeout).fetch_all_sync()
        dataset = normalize_dataset(payload)
    except (RemoteError, PayloadParseError) as exc:
        print(f"Could not load remote data: {exc}")
        return 3

    checks = _run_integrity_checks(dataset)
    _print_counts(dataset)
    _print_results("Integrity Checks", checks)
    _print_samples(dataset, args.samples)
    return 0 if all(check.ok for check in checks) else 1


if __name__ == "__main__":
    sys.exit(main())
