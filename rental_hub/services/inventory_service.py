"""Inventory ledger: every change to a product's available counter goes through here.

Only returned units move the counter; pickups leave it alone. Callers describe
the change as a list of movements. Each movement carries a dedupe key; a key
that is already on the ledger is skipped, so replaying the same return command
never restocks twice. The whole batch is validated before the first counter
is touched, and nothing is committed here: the caller's session commit makes
the order mutation and the counter changes land together.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_hub.models.rental_models import InventoryMovement, OrderItem
from rental_hub.services.catalog_service import increment_available, require_product
from rental_hub.services.errors import RentalValidationError


LOGGER = logging.getLogger("rental_hub.inventory")

REASON_RETURN = "return"
REASON_RETURN_REQUEST = "return_request"


def build_movement(
    product_id: int,
    delta: int,
    reason: str,
    dedupe_key: str,
    order_id: int | None = None,
    return_request_id: int | None = None,
) -> dict:
    return {
        "productID": int(product_id),
        "delta": int(delta),
        "reason": reason,
        "dedupeKey": dedupe_key,
        "orderID": order_id,
        "returnRequestID": return_request_id,
    }


def _recorded_keys(db: Session, keys: list[str]) -> set[str]:
    if not keys:
        return set()
    rows = db.execute(select(InventoryMovement.DedupeKey).where(InventoryMovement.DedupeKey.in_(keys))).scalars().all()
    return set(rows)


def apply_inventory_movements(db: Session, movements: list[dict]) -> list[InventoryMovement]:
    for movement in movements:
        if int(movement["delta"]) < 0:
            raise RentalValidationError(f"Inventory movement {movement['dedupeKey']} must not be negative.")
    pending = [m for m in movements if int(m["delta"]) != 0]
    if not pending:
        return []

    keys = [m["dedupeKey"] for m in pending]
    if len(keys) != len(set(keys)):
        raise RentalValidationError("Duplicate inventory movement in one batch.")

    recorded = _recorded_keys(db, keys)
    fresh = [m for m in pending if m["dedupeKey"] not in recorded]
    for movement in pending:
        if movement["dedupeKey"] in recorded:
            LOGGER.info("Inventory movement already applied key=%s", movement["dedupeKey"])

    totals: dict[int, int] = {}
    for movement in fresh:
        totals[movement["productID"]] = totals.get(movement["productID"], 0) + int(movement["delta"])

    for product_id in totals:
        require_product(db, product_id)

    for product_id, delta in totals.items():
        product = increment_available(db, product_id, delta)
        # Pickup never decrements, so returns can push this past stock. Logged, not clamped.
        if int(product.Available or 0) > int(product.Stock or 0):
            LOGGER.warning(
                "Product availability above stock product_id=%s available=%s stock=%s",
                product_id,
                product.Available,
                product.Stock,
            )

    applied: list[InventoryMovement] = []
    for movement in fresh:
        row = InventoryMovement(
            ProductID=movement["productID"],
            OrderID=movement["orderID"],
            ReturnRequestID=movement["returnRequestID"],
            Delta=movement["delta"],
            Reason=movement["reason"],
            DedupeKey=movement["dedupeKey"],
        )
        db.add(row)
        applied.append(row)
        LOGGER.info(
            "Inventory movement product_id=%s delta=%s reason=%s key=%s",
            movement["productID"],
            movement["delta"],
            movement["reason"],
            movement["dedupeKey"],
        )
    db.flush()
    return applied


def ledger_balance(db: Session, product_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(InventoryMovement.Delta), 0)).where(InventoryMovement.ProductID == int(product_id))
    ).scalar_one()
    return int(total or 0)


def outstanding_units(db: Session, product_id: int) -> int:
    """Units picked up and not yet returned, summed over every order line."""
    total = db.execute(
        select(func.coalesce(func.sum(OrderItem.PickedUpQuantity - OrderItem.ReturnedQuantity), 0)).where(
            OrderItem.ProductID == int(product_id)
        )
    ).scalar_one()
    return int(total or 0)
