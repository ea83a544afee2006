from __future__ import annotations

import logging
import math
import os
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_hub.models.rental_models import Order, OrderItem, User
from rental_hub.schemas.orders import (
    CreateOrderDto,
    ProcessPickupDto,
    ProcessReturnDto,
    SchedulePickupDto,
    UpdateOrderStatusDto,
)
from rental_hub.services.catalog_service import require_product
from rental_hub.services.clock import as_naive_utc, utc_now
from rental_hub.services.errors import InvalidTransitionError, NotFoundError, RentalValidationError
from rental_hub.services.finance_service import compute_late_fee, create_invoice
from rental_hub.services.identity_service import (
    STAFF_ROLES,
    is_admin,
    require_party,
    require_role,
    require_vendor_or_admin,
)
from rental_hub.services.inventory_service import REASON_RETURN, apply_inventory_movements, build_movement
from rental_hub.services.sequence_service import ORDER_SEQUENCE, generate_number


LOGGER = logging.getLogger("rental_hub.orders")

TAX_RATE = float(os.environ.get("RENTAL_TAX_RATE") or "0.18")
SECONDS_PER_DAY = 24 * 60 * 60

ORDER_STATES = {"pending", "confirmed", "picked_up", "active", "returned", "completed", "cancelled"}
TERMINAL_ORDER_STATES = {"completed", "cancelled"}
# Equipment is with the customer in either of these.
OUT_STATES = {"picked_up", "active"}
PICKUP_STATES = {"pending", "confirmed", "picked_up", "active"}
RETURNABLE_STATES = {"picked_up", "active", "returned"}
GENERIC_STATUS_TARGETS = {"pending", "confirmed", "active", "cancelled"}
ORDER_TRANSITIONS = {
    "pending": {"confirmed", "picked_up", "cancelled"},
    "confirmed": {"pending", "picked_up", "cancelled"},
    "picked_up": {"active", "returned", "completed"},
    "active": {"picked_up", "returned", "completed"},
    "returned": {"completed"},
    "completed": set(),
    "cancelled": set(),
}
SORT_FIELDS = {
    "createdDate": Order.CreatedDate,
    "pickupDate": Order.PickupDate,
    "returnDate": Order.ReturnDate,
}


def _normalize_status(value: str | None) -> str:
    return (value or "").strip().lower()


def transition_order_state(order: Order, target_state: str, now: datetime | None = None) -> None:
    current = _normalize_status(order.Status)
    target = _normalize_status(target_state)
    if target == current:
        return
    if current not in ORDER_TRANSITIONS or target not in ORDER_TRANSITIONS[current]:
        LOGGER.warning("Rejected order transition order=%s %s -> %s", order.OrderNumber, current, target)
        raise InvalidTransitionError(f"Invalid state transition: {current} -> {target}")
    order.Status = target
    order.UpdatedDate = now or utc_now()


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def get_order(db: Session, order_id: int) -> Order | None:
    stmt = select(Order).options(selectinload(Order.OrderItems)).where(Order.OrderID == int(order_id))
    return db.execute(stmt).scalars().first()


def require_order(db: Session, order_id: int) -> Order:
    order = get_order(db, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def find_orders(
    db: Session,
    customer_id: int | None = None,
    vendor_id: int | None = None,
    statuses: Iterable[str] | None = None,
    sort_field: str = "createdDate",
    descending: bool = True,
) -> list[Order]:
    column = SORT_FIELDS.get(sort_field)
    if column is None:
        raise RentalValidationError(f"Unsupported sort field: {sort_field}")
    stmt = select(Order).options(selectinload(Order.OrderItems))
    if customer_id is not None:
        stmt = stmt.where(Order.CustomerID == int(customer_id))
    if vendor_id is not None:
        stmt = stmt.where(Order.VendorID == int(vendor_id))
    if statuses is not None:
        stmt = stmt.where(Order.Status.in_(list(statuses)))
    if descending:
        stmt = stmt.order_by(column.desc(), Order.OrderID.desc())
    else:
        stmt = stmt.order_by(column.asc(), Order.OrderID.asc())
    return list(db.execute(stmt).scalars().all())


def _rental_days(start: datetime | None, end: datetime | None) -> int:
    if not start or not end:
        return 1
    return max(1, math.ceil((end - start).total_seconds() / SECONDS_PER_DAY))


def create_order(db: Session, actor: dict[str, Any], payload: CreateOrderDto, now: datetime | None = None) -> Order:
    current = now or utc_now()
    if not payload.items:
        raise RentalValidationError("No order items")

    pickup_date = as_naive_utc(payload.pickupDate)
    return_date = as_naive_utc(payload.returnDate)
    if pickup_date and return_date and return_date < pickup_date:
        raise RentalValidationError("returnDate must be on or after pickupDate.")

    seen: set[int] = set()
    products = []
    for entry in payload.items:
        if entry.productId in seen:
            raise RentalValidationError(f"Product {entry.productId} appears more than once.")
        seen.add(entry.productId)
        if int(entry.quantity) < 1:
            raise RentalValidationError(f"Quantity for product {entry.productId} must be at least 1.")
        product = require_product(db, entry.productId)
        if (product.Status or "active") != "active":
            raise RentalValidationError(f"Product {product.ProductID} is not available for rent.")
        products.append(product)

    customer = db.get(User, int(actor["userID"]))
    vendor = db.get(User, products[0].VendorID) if products[0].VendorID else None

    lines: list[OrderItem] = []
    subtotal = 0.0
    deposit = 0.0
    for entry, product in zip(payload.items, products):
        quantity = int(entry.quantity)
        rate = float(entry.dailyRate if entry.dailyRate is not None else (product.DailyRate or 0))
        start = as_naive_utc(entry.startDate) or pickup_date
        end = as_naive_utc(entry.endDate) or return_date
        days = int(entry.rentalDays) if entry.rentalDays else _rental_days(start, end)
        line_total = float(entry.subtotal) if entry.subtotal is not None else rate * quantity * days
        subtotal += line_total
        deposit += float(product.Deposit or 0) * quantity
        lines.append(
            OrderItem(
                ProductID=product.ProductID,
                ProductName=entry.productName or product.Name,
                Quantity=quantity,
                PickedUpQuantity=0,
                ReturnedQuantity=0,
                StartDate=start,
                EndDate=end,
                RentalDays=days,
                DailyRate=rate,
                Subtotal=line_total,
            )
        )

    order_subtotal = float(payload.subtotal) if payload.subtotal is not None else subtotal
    tax = float(payload.taxAmount) if payload.taxAmount is not None else round(order_subtotal * TAX_RATE, 2)
    order = Order(
        OrderNumber=generate_number(db, ORDER_SEQUENCE, "RO"),
        QuotationID=payload.quotationId,
        CustomerID=int(actor["userID"]),
        CustomerName=customer.Name if customer else actor.get("name"),
        CustomerEmail=customer.Email if customer else actor.get("email"),
        VendorID=vendor.UserID if vendor else products[0].VendorID,
        VendorName=(vendor.Name if vendor else None) or products[0].VendorName,
        VendorEmail=vendor.Email if vendor else None,
        Subtotal=order_subtotal,
        TaxAmount=tax,
        DepositAmount=float(payload.depositAmount) if payload.depositAmount is not None else deposit,
        TotalAmount=float(payload.totalAmount) if payload.totalAmount is not None else order_subtotal + tax,
        PaidAmount=0,
        Status="pending",
        PickupDate=pickup_date,
        ReturnDate=return_date,
        Notes=payload.notes,
        CreatedDate=current,
        UpdatedDate=current,
    )
    order.OrderItems = lines
    db.add(order)
    db.flush()
    create_invoice(db, order, current)
    LOGGER.info(
        "Order created order=%s customer_id=%s vendor_id=%s items=%s total=%.2f",
        order.OrderNumber,
        order.CustomerID,
        order.VendorID,
        len(lines),
        float(order.TotalAmount or 0),
    )
    return order


def get_order_for_actor(db: Session, actor: dict[str, Any], order_id: int) -> Order:
    order = require_order(db, order_id)
    require_party(actor, order.CustomerID, order.VendorID)
    return order


def list_orders(db: Session, actor: dict[str, Any]) -> list[Order]:
    if is_admin(actor):
        return find_orders(db)
    if actor.get("role") == "vendor":
        return find_orders(db, vendor_id=actor["userID"])
    return find_orders(db, customer_id=actor["userID"])


def update_order_status(db: Session, actor: dict[str, Any], order_id: int, payload: UpdateOrderStatusDto, now: datetime | None = None) -> Order:
    current = now or utc_now()
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    target = _normalize_status(payload.status)
    if target not in ORDER_STATES:
        raise RentalValidationError(f"Unknown order status: {payload.status}")
    if target not in GENERIC_STATUS_TARGETS:
        raise InvalidTransitionError(f"Status {target} can only be set by its pickup or return operation.")
    previous = order.Status
    transition_order_state(order, target, current)
    if payload.actualReturnDate:
        order.ActualReturnDate = as_naive_utc(payload.actualReturnDate)
    order.UpdatedDate = current
    LOGGER.info("Order status updated order=%s %s -> %s", order.OrderNumber, previous, order.Status)
    return order


def schedule_pickup(db: Session, actor: dict[str, Any], order_id: int, payload: SchedulePickupDto, now: datetime | None = None) -> Order:
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    if _normalize_status(order.Status) in TERMINAL_ORDER_STATES:
        raise InvalidTransitionError(f"Cannot schedule pickup for an order in status {order.Status}.")
    if payload.pickupDate:
        order.PickupDate = as_naive_utc(payload.pickupDate)
    if payload.pickupTime:
        note = f"Scheduled pickup time: {payload.pickupTime}."
        order.Notes = f"{note}\n{order.Notes}" if order.Notes else note
    order.UpdatedDate = now or utc_now()
    LOGGER.info("Pickup scheduled order=%s pickup_date=%s", order.OrderNumber, order.PickupDate)
    return order


def _pickup_targets(order: Order, payload: ProcessPickupDto | None) -> dict[int, int]:
    lines = {item.ProductID: item for item in order.OrderItems}
    if payload is None or payload.items is None:
        return {item.ProductID: int(item.Quantity or 0) for item in order.OrderItems}
    if not payload.items:
        raise RentalValidationError("No pickup items supplied.")

    targets: dict[int, int] = {}
    for entry in payload.items:
        if entry.productId in targets:
            raise RentalValidationError(f"Product {entry.productId} appears more than once.")
        line = lines.get(entry.productId)
        if line is None:
            raise RentalValidationError(f"Product {entry.productId} is not part of this order.")
        quantity = int(entry.pickedUpQuantity)
        if quantity < 0 or quantity > int(line.Quantity or 0):
            raise RentalValidationError(
                f"Picked up quantity for product {entry.productId} must be between 0 and {line.Quantity}."
            )
        if quantity < int(line.PickedUpQuantity or 0):
            raise RentalValidationError(
                f"Picked up quantity for product {entry.productId} cannot go below {line.PickedUpQuantity}."
            )
        targets[entry.productId] = quantity
    return targets


def process_pickup(db: Session, actor: dict[str, Any], order_id: int, payload: ProcessPickupDto | None = None, now: datetime | None = None) -> Order:
    """Hand equipment to the customer.

    ``pickedUpQuantity`` is set to the requested value, not added to it. The
    product's available counter is not touched here; units only come back
    onto it through a return.
    """
    current = now or utc_now()
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    status = _normalize_status(order.Status)
    if status not in PICKUP_STATES:
        LOGGER.warning("Rejected pickup order=%s status=%s", order.OrderNumber, status)
        raise InvalidTransitionError(f"Cannot process pickup for an order in status {order.Status}.")

    targets = _pickup_targets(order, payload)
    lines = {item.ProductID: item for item in order.OrderItems}
    for product_id, quantity in targets.items():
        lines[product_id].PickedUpQuantity = quantity
    transition_order_state(order, "picked_up", current)
    order.PickupDate = current
    order.UpdatedDate = current
    LOGGER.info("Pickup processed order=%s lines=%s", order.OrderNumber, len(targets))
    return order


def _return_targets(order: Order, payload: ProcessReturnDto | None) -> dict[int, int]:
    lines = {item.ProductID: item for item in order.OrderItems}
    if payload is None or payload.items is None:
        return {item.ProductID: int(item.PickedUpQuantity or 0) for item in order.OrderItems}
    if not payload.items:
        raise RentalValidationError("No return items supplied.")

    targets: dict[int, int] = {}
    for entry in payload.items:
        if entry.productId in targets:
            raise RentalValidationError(f"Product {entry.productId} appears more than once.")
        line = lines.get(entry.productId)
        if line is None:
            raise RentalValidationError(f"Product {entry.productId} is not part of this order.")
        quantity = int(entry.returnedQuantity)
        picked = int(line.PickedUpQuantity or 0)
        if quantity < 0 or quantity > picked:
            raise RentalValidationError(f"Returned quantity for product {entry.productId} must be between 0 and {picked}.")
        if quantity < int(line.ReturnedQuantity or 0):
            raise RentalValidationError(
                f"Returned quantity for product {entry.productId} cannot go below {line.ReturnedQuantity}."
            )
        targets[entry.productId] = quantity
    return targets


def process_return(db: Session, actor: dict[str, Any], order_id: int, payload: ProcessReturnDto | None = None, now: datetime | None = None) -> Order:
    current = now or utc_now()
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    status = _normalize_status(order.Status)
    if status not in RETURNABLE_STATES and status != "completed":
        LOGGER.warning("Rejected return order=%s status=%s", order.OrderNumber, status)
        raise InvalidTransitionError(f"Cannot process return for an order in status {order.Status}.")

    targets = _return_targets(order, payload)
    lines = {item.ProductID: item for item in order.OrderItems}
    deltas = {product_id: quantity - int(lines[product_id].ReturnedQuantity or 0) for product_id, quantity in targets.items()}

    if status == "completed":
        # A replay of the call that completed the order changes nothing.
        if any(delta > 0 for delta in deltas.values()):
            raise InvalidTransitionError("Order is already completed.")
        LOGGER.info("Return replay ignored order=%s", order.OrderNumber)
        return order

    movements = [
        build_movement(
            product_id,
            delta,
            REASON_RETURN,
            f"return:{order.OrderID}:{product_id}:{targets[product_id]}",
            order_id=order.OrderID,
        )
        for product_id, delta in deltas.items()
        if delta > 0
    ]
    apply_inventory_movements(db, movements)

    item_notes = {}
    if payload is not None and payload.items:
        item_notes = {entry.productId: entry.damageNotes for entry in payload.items if entry.damageNotes}
    for product_id, quantity in targets.items():
        line = lines[product_id]
        line.ReturnedQuantity = quantity
        if item_notes.get(product_id):
            line.Notes = _append_note(line.Notes, item_notes[product_id])

    if payload is not None:
        if payload.lateFee and payload.lateFee > 0:
            order.LateFee = payload.lateFee
        if payload.damageCharges and payload.damageCharges > 0:
            order.DamageCharges = payload.damageCharges
        if payload.damageNotes:
            order.Notes = _append_note(order.Notes, f"Return Notes: {payload.damageNotes}")

    transition_order_state(order, "completed", current)
    order.ActualReturnDate = current
    order.UpdatedDate = current
    LOGGER.info("Return processed order=%s movements=%s", order.OrderNumber, len(movements))
    return order


def cancel_pickup(db: Session, actor: dict[str, Any], order_id: int, now: datetime | None = None) -> Order:
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    status = _normalize_status(order.Status)
    if status == "confirmed":
        target = "pending"
    elif status == "pending":
        target = "cancelled"
    else:
        # picked_up is refused too: units are out with the customer and have to come back through a return.
        LOGGER.warning("Rejected pickup cancel order=%s status=%s", order.OrderNumber, status)
        raise InvalidTransitionError(f"Cannot cancel pickup for an order in status {order.Status}.")
    transition_order_state(order, target, now)
    LOGGER.info("Pickup cancelled order=%s %s -> %s", order.OrderNumber, status, target)
    return order


def calculate_late_fee(db: Session, actor: dict[str, Any], order_id: int, now: datetime | None = None) -> dict:
    order = require_order(db, order_id)
    require_vendor_or_admin(actor, order.VendorID)
    return compute_late_fee(order, now)


def _staff_scope(actor: dict[str, Any]) -> int | None:
    require_role(actor, STAFF_ROLES)
    return None if is_admin(actor) else actor["userID"]


def list_pickups(db: Session, actor: dict[str, Any]) -> list[Order]:
    return find_orders(
        db,
        vendor_id=_staff_scope(actor),
        statuses={"confirmed", "picked_up"},
        sort_field="pickupDate",
        descending=False,
    )


def list_returns(db: Session, actor: dict[str, Any], now: datetime | None = None) -> list[dict]:
    current = now or utc_now()
    orders = find_orders(
        db,
        vendor_id=_staff_scope(actor),
        statuses={"picked_up", "active", "returned", "completed"},
        sort_field="returnDate",
        descending=False,
    )
    rows = []
    for order in orders:
        row = serialize_order(order)
        row["isOverdue"] = bool(
            _normalize_status(order.Status) in OUT_STATES and order.ReturnDate is not None and order.ReturnDate < current
        )
        rows.append(row)
    return rows


def list_eligible_orders(db: Session, actor: dict[str, Any]) -> list[Order]:
    """Customer orders that still have picked-up units out."""
    orders = find_orders(db, customer_id=actor["userID"], statuses=OUT_STATES)
    return [
        order
        for order in orders
        if any(int(item.PickedUpQuantity or 0) > int(item.ReturnedQuantity or 0) for item in order.OrderItems)
    ]


def serialize_order_item(item: OrderItem) -> dict:
    return {
        "orderItemID": item.OrderItemID,
        "productId": item.ProductID,
        "productName": item.ProductName,
        "quantity": item.Quantity,
        "pickedUpQuantity": item.PickedUpQuantity,
        "returnedQuantity": item.ReturnedQuantity,
        "startDate": item.StartDate,
        "endDate": item.EndDate,
        "rentalDays": item.RentalDays,
        "dailyRate": item.DailyRate,
        "subtotal": item.Subtotal,
        "notes": item.Notes,
    }


def serialize_order(order: Order) -> dict:
    return {
        "orderID": order.OrderID,
        "orderNumber": order.OrderNumber,
        "quotationId": order.QuotationID,
        "customerID": order.CustomerID,
        "customerName": order.CustomerName,
        "customerEmail": order.CustomerEmail,
        "vendorID": order.VendorID,
        "vendorName": order.VendorName,
        "vendorEmail": order.VendorEmail,
        "items": [serialize_order_item(item) for item in order.OrderItems],
        "subtotal": order.Subtotal,
        "taxAmount": order.TaxAmount,
        "depositAmount": order.DepositAmount,
        "totalAmount": order.TotalAmount,
        "paidAmount": order.PaidAmount,
        "status": order.Status,
        "pickupDate": order.PickupDate,
        "returnDate": order.ReturnDate,
        "actualReturnDate": order.ActualReturnDate,
        "lateFee": order.LateFee,
        "damageCharges": order.DamageCharges,
        "notes": order.Notes,
        "createdDate": order.CreatedDate,
        "updatedDate": order.UpdatedDate,
    }
