#!/usr/bin/env python3
"""Inventory ledger overview and integrity checks for Rental Hub."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "Users",
    "Products",
    "Orders",
    "OrderItems",
    "Invoices",
    "Payments",
    "ReturnRequests",
    "ReturnRequestItems",
    "InventoryMovements",
    "SequenceCounters",
    "AuditLogs",
]


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


def _existing_tables(engine: Engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def _count_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def _warn_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, True, f"count={count}" + (" (warning)" if count else ""))


def run_existence_checks(engine: Engine) -> list[CheckResult]:
    existing = _existing_tables(engine)
    return [CheckResult(f"table:{table}", table in existing, "present" if table in existing else "missing") for table in EXPECTED_TABLES]


def run_ledger_checks(engine: Engine) -> list[CheckResult]:
    existing = _existing_tables(engine)
    checks: list[CheckResult] = []

    if "OrderItems" in existing:
        checks.append(
            _count_check(
                engine,
                "orderitems:returned_gt_picked",
                'SELECT COUNT(*) FROM "OrderItems" WHERE "ReturnedQuantity" > "PickedUpQuantity"',
            )
        )
        checks.append(
            _count_check(
                engine,
                "orderitems:picked_gt_quantity",
                'SELECT COUNT(*) FROM "OrderItems" WHERE "PickedUpQuantity" > "Quantity"',
            )
        )
        checks.append(
            _count_check(
                engine,
                "orderitems:negative_quantity",
                'SELECT COUNT(*) FROM "OrderItems" WHERE "ReturnedQuantity" < 0 OR "PickedUpQuantity" < 0',
            )
        )

    if "Products" in existing:
        checks.append(
            _count_check(
                engine,
                "products:negative_available",
                'SELECT COUNT(*) FROM "Products" WHERE "Available" < 0',
            )
        )
        # Pickups do not decrement, so returns may legitimately restock past stock.
        checks.append(
            _warn_check(
                engine,
                "products:available_above_stock",
                'SELECT COUNT(*) FROM "Products" WHERE "Available" > "Stock"',
            )
        )

    if "Products" in existing and "InventoryMovements" in existing:
        # Available should equal stock plus every recorded movement.
        checks.append(
            _count_check(
                engine,
                "products:ledger_drift",
                """
                SELECT COUNT(*)
                FROM "Products" p
                LEFT JOIN (
                    SELECT "ProductID", SUM("Delta") AS total
                    FROM "InventoryMovements"
                    GROUP BY "ProductID"
                ) m ON m."ProductID" = p."ProductID"
                WHERE p."Available" <> p."Stock" + COALESCE(m.total, 0)
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "inventorymovements:negative_delta",
                'SELECT COUNT(*) FROM "InventoryMovements" WHERE "Delta" < 0',
            )
        )
        checks.append(
            _count_check(
                engine,
                "inventorymovements:orphan_productid",
                """
                SELECT COUNT(*)
                FROM "InventoryMovements" im
                LEFT JOIN "Products" p ON p."ProductID" = im."ProductID"
                WHERE p."ProductID" IS NULL
                """,
            )
        )

    if "Invoices" in existing:
        checks.append(
            _count_check(
                engine,
                "invoices:paid_with_balance",
                """SELECT COUNT(*) FROM "Invoices" WHERE "Status" = 'paid' AND "BalanceAmount" <> 0""",
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
    existing = _existing_tables(engine)
    for table in EXPECTED_TABLES:
        if table not in existing:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f'SELECT COUNT(*) FROM "{table}"')
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    existing = _existing_tables(engine)

    if "InventoryMovements" in existing:
        rows = _rows(
            engine,
            """
            SELECT "MovementID", "ProductID", "OrderID", "Delta", "Reason", "DedupeKey"
            FROM "InventoryMovements"
            ORDER BY "MovementID" DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("InventoryMovements (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "AuditLogs" in existing:
        rows = _rows(
            engine,
            """
            SELECT "AuditID", "EntityType", "Action", "UserID", "CreatedAt"
            FROM "AuditLogs"
            ORDER BY "AuditID" DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("AuditLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rental Hub inventory ledger overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_HUB_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_HUB_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existence = run_existence_checks(engine)
    ledger = run_ledger_checks(engine)
    _print_results("Table Existence", existence)
    _print_results("Ledger Checks", ledger)
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0 if all(row.ok for row in existence + ledger) else 1


if __name__ == "__main__":
    sys.exit(main())
