#!/usr/bin/env python3
"""Database overview and integrity checks for Lend and Learn."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from lend_and_learn.services.reservation_state import ACTIVE_STATUS_VALUES, ReservationStatus


EXPECTED_TABLES = [
    "Users",
    "Devices",
    "Reservations",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Users": ["UserID", "Username", "FirstName", "LastName", "Email"],
    "Devices": ["DeviceID", "Name", "Description", "OwnerID"],
    "Reservations": ["ReservationID", "DateStart", "DateEnd", "Status", "UserID", "DeviceID"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _table_names(engine: Engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def _column_names(engine: Engine, table_name: str) -> set[str]:
    return {str(column["name"]) for column in inspect(engine).get_columns(table_name)}


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = _column_names(engine, table)
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _active_params() -> dict[str, str]:
    return {f"active_{index}": value for index, value in enumerate(ACTIVE_STATUS_VALUES)}


def _run_integrity_checks(engine: Engine) -> list[CheckResult]:
    checks: list[CheckResult] = []
    present = _table_names(engine)

    if "Reservations" in present:
        params = _active_params()
        placeholders = ", ".join(f":{name}" for name in params)
        # Two concurrent creates can both pass the collision check; report what got committed.
        overlapping = _scalar(
            engine,
            f"""
            SELECT COUNT(*)
            FROM "Reservations" a
            JOIN "Reservations" b
              ON a."DeviceID" = b."DeviceID"
             AND a."ReservationID" < b."ReservationID"
             AND a."DateStart" <= b."DateEnd"
             AND a."DateEnd" >= b."DateStart"
            WHERE a."Status" IN ({placeholders})
              AND b."Status" IN ({placeholders})
            """,
            params,
        )
        checks.append(
            CheckResult(
                "reservations:overlapping_active",
                int(overlapping or 0) == 0,
                f"count={int(overlapping or 0)}",
            )
        )

        inverted = _scalar(engine, 'SELECT COUNT(*) FROM "Reservations" WHERE "DateEnd" < "DateStart"')
        checks.append(
            CheckResult(
                "reservations:end_before_start",
                int(inverted or 0) == 0,
                f"count={int(inverted or 0)}",
            )
        )

        known = {f"status_{status.name}": status.value for status in ReservationStatus}
        known_placeholders = ", ".join(f":{name}" for name in known)
        unknown_status = _scalar(
            engine,
            f'SELECT COUNT(*) FROM "Reservations" WHERE "Status" NOT IN ({known_placeholders})',
            known,
        )
        checks.append(
            CheckResult(
                "reservations:unknown_status",
                int(unknown_status or 0) == 0,
                f"count={int(unknown_status or 0)}",
            )
        )

    if "Devices" in present and "Users" in present:
        orphan_owner = _scalar(
            engine,
            """
            SELECT COUNT(*)
            FROM "Devices" d
            LEFT JOIN "Users" u ON u."UserID" = d."OwnerID"
            WHERE u."UserID" IS NULL
            """,
        )
        checks.append(
            CheckResult(
                "devices:orphan_ownerid",
                int(orphan_owner or 0) == 0,
                f"count={int(orphan_owner or 0)}",
            )
        )

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = _table_names(engine)
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f'SELECT COUNT(*) FROM "{table}"')
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)

    if "Reservations" in _table_names(engine):
        rows = _rows(
            engine,
            """
            SELECT "ReservationID", "DeviceID", "UserID", "DateStart", "DateEnd", "Status"
            FROM "Reservations"
            ORDER BY "ReservationID" DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("Reservations (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Lend and Learn DB overview")
    parser.add_argument("--db-url", default=os.environ.get("LENDING_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("LENDING_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    _print_results("Integrity Checks", _run_integrity_checks(engine))
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
