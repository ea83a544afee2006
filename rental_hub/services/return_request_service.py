from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_hub.models.rental_models import ReturnRequest, ReturnRequestItem
from rental_hub.schemas.returns import CreateReturnRequestDto, UpdateReturnRequestStatusDto
from rental_hub.services.clock import as_naive_utc, utc_now
from rental_hub.services.errors import ForbiddenError, InvalidTransitionError, NotFoundError, RentalValidationError
from rental_hub.services.identity_service import STAFF_ROLES, is_admin, is_owner, require_party, require_role, require_vendor_or_admin
from rental_hub.services.inventory_service import REASON_RETURN_REQUEST, apply_inventory_movements, build_movement
from rental_hub.services.order_service import OUT_STATES, TERMINAL_ORDER_STATES, require_order, transition_order_state
from rental_hub.services.sequence_service import RETURN_REQUEST_SEQUENCE, generate_number


LOGGER = logging.getLogger("rental_hub.returns")

REQUEST_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"scheduled", "completed"},
    "scheduled": {"completed"},
    "completed": set(),
    "rejected": set(),
}


def get_return_request(db: Session, request_id: int) -> ReturnRequest | None:
    stmt = (
        select(ReturnRequest)
        .options(selectinload(ReturnRequest.Items))
        .where(ReturnRequest.ReturnRequestID == int(request_id))
    )
    return db.execute(stmt).scalars().first()


def require_return_request(db: Session, request_id: int) -> ReturnRequest:
    request = get_return_request(db, request_id)
    if not request:
        raise NotFoundError("Return request not found")
    return request


def create_return_request(db: Session, actor: dict[str, Any], payload: CreateReturnRequestDto, now: datetime | None = None) -> ReturnRequest:
    current = now or utc_now()
    order = require_order(db, payload.orderId)
    if not is_owner(actor, order.CustomerID):
        raise ForbiddenError("Not authorized to return this order")
    if order.Status not in OUT_STATES:
        raise InvalidTransitionError("This order cannot be returned at this time")
    if not payload.items:
        raise RentalValidationError("No return items supplied.")

    lines = {item.ProductID: item for item in order.OrderItems}
    seen: set[int] = set()
    items: list[ReturnRequestItem] = []
    for entry in payload.items:
        if entry.productId in seen:
            raise RentalValidationError(f"Product {entry.productId} appears more than once.")
        seen.add(entry.productId)
        line = lines.get(entry.productId)
        if line is None:
            raise RentalValidationError(f"Product {entry.productId} is not part of this order.")
        outstanding = int(line.PickedUpQuantity or 0) - int(line.ReturnedQuantity or 0)
        if entry.returnQuantity < 1 or entry.returnQuantity > outstanding:
            raise RentalValidationError(
                f"Return quantity for product {entry.productId} must be between 1 and {outstanding}."
            )
        items.append(
            ReturnRequestItem(
                ProductID=entry.productId,
                ProductName=entry.productName or line.ProductName,
                Quantity=line.Quantity,
                ReturnQuantity=entry.returnQuantity,
                Condition=entry.condition,
            )
        )

    request = ReturnRequest(
        RequestNumber=generate_number(db, RETURN_REQUEST_SEQUENCE, "RET"),
        OrderID=order.OrderID,
        OrderNumber=order.OrderNumber,
        CustomerID=order.CustomerID,
        CustomerName=order.CustomerName,
        CustomerEmail=order.CustomerEmail,
        VendorID=order.VendorID,
        VendorName=order.VendorName,
        Reason=payload.reason,
        ReasonDetails=payload.reasonDetails,
        PreferredDate=as_naive_utc(payload.preferredDate),
        CustomerNotes=payload.customerNotes,
        Status="pending",
        RefundAmount=0,
        CreatedDate=current,
        UpdatedDate=current,
    )
    request.Items = items
    db.add(request)
    db.flush()
    LOGGER.info("Return request created request=%s order=%s items=%s", request.RequestNumber, order.OrderNumber, len(items))
    return request


def _complete_return_request(db: Session, request: ReturnRequest, now: datetime) -> None:
    """Apply the request's quantities to the order and stock.

    Returned quantities are added to what the line already holds. The order
    moves to ``returned`` only once every line is fully back.
    """
    order = require_order(db, request.OrderID)
    if order.Status in TERMINAL_ORDER_STATES:
        raise InvalidTransitionError(f"Order {order.OrderNumber} is already {order.Status}.")

    lines = {item.ProductID: item for item in order.OrderItems}
    for item in request.Items:
        line = lines.get(item.ProductID)
        if line is None:
            raise RentalValidationError(f"Product {item.ProductID} is no longer part of order {order.OrderNumber}.")
        if int(line.ReturnedQuantity or 0) + int(item.ReturnQuantity) > int(line.PickedUpQuantity or 0):
            raise InvalidTransitionError(f"Return quantity for product {item.ProductID} exceeds units picked up.")

    movements = [
        build_movement(
            item.ProductID,
            int(item.ReturnQuantity),
            REASON_RETURN_REQUEST,
            f"return-request:{request.ReturnRequestID}:{item.ProductID}",
            order_id=order.OrderID,
            return_request_id=request.ReturnRequestID,
        )
        for item in request.Items
    ]
    applied = apply_inventory_movements(db, movements)
    applied_products = {row.ProductID for row in applied}
    for item in request.Items:
        if item.ProductID not in applied_products:
            continue
        line = lines[item.ProductID]
        line.ReturnedQuantity = int(line.ReturnedQuantity or 0) + int(item.ReturnQuantity)

    if all(int(line.ReturnedQuantity or 0) >= int(line.Quantity or 0) for line in order.OrderItems):
        transition_order_state(order, "returned", now)
        order.ActualReturnDate = now
        LOGGER.info("Order fully returned order=%s request=%s", order.OrderNumber, request.RequestNumber)
    order.UpdatedDate = now


def update_return_request_status(
    db: Session,
    actor: dict[str, Any],
    request_id: int,
    payload: UpdateReturnRequestStatusDto,
    now: datetime | None = None,
) -> ReturnRequest:
    current = now or utc_now()
    request = require_return_request(db, request_id)
    require_vendor_or_admin(actor, request.VendorID)

    previous = request.Status
    target = payload.status or previous
    if target != previous:
        if target not in REQUEST_TRANSITIONS.get(previous, set()):
            LOGGER.warning("Rejected return request transition request=%s %s -> %s", request.RequestNumber, previous, target)
            raise InvalidTransitionError(f"Invalid state transition: {previous} -> {target}")
        if target == "completed":
            _complete_return_request(db, request, current)
            request.CompletedDate = current
        request.Status = target

    if payload.scheduledDate:
        request.ScheduledDate = as_naive_utc(payload.scheduledDate)
    if payload.vendorNotes:
        request.VendorNotes = payload.vendorNotes
    if payload.refundAmount is not None:
        request.RefundAmount = payload.refundAmount
    request.UpdatedDate = current
    LOGGER.info("Return request updated request=%s %s -> %s", request.RequestNumber, previous, request.Status)
    return request


def get_return_request_for_actor(db: Session, actor: dict[str, Any], request_id: int) -> ReturnRequest:
    request = require_return_request(db, request_id)
    require_party(actor, request.CustomerID, request.VendorID)
    return request


def list_my_return_requests(db: Session, actor: dict[str, Any]) -> list[ReturnRequest]:
    stmt = (
        select(ReturnRequest)
        .options(selectinload(ReturnRequest.Items))
        .where(ReturnRequest.CustomerID == int(actor["userID"]))
        .order_by(ReturnRequest.CreatedDate.desc(), ReturnRequest.ReturnRequestID.desc())
    )
    return list(db.execute(stmt).scalars().all())


def list_vendor_return_requests(db: Session, actor: dict[str, Any]) -> list[ReturnRequest]:
    require_role(actor, STAFF_ROLES)
    stmt = select(ReturnRequest).options(selectinload(ReturnRequest.Items))
    if not is_admin(actor):
        stmt = stmt.where(ReturnRequest.VendorID == int(actor["userID"]))
    stmt = stmt.order_by(ReturnRequest.CreatedDate.desc(), ReturnRequest.ReturnRequestID.desc())
    return list(db.execute(stmt).scalars().all())


def serialize_return_request(request: ReturnRequest) -> dict:
    return {
        "returnRequestID": request.ReturnRequestID,
        "requestNumber": request.RequestNumber,
        "orderID": request.OrderID,
        "orderNumber": request.OrderNumber,
        "customerID": request.CustomerID,
        "customerName": request.CustomerName,
        "customerEmail": request.CustomerEmail,
        "vendorID": request.VendorID,
        "vendorName": request.VendorName,
        "items": [
            {
                "productId": item.ProductID,
                "productName": item.ProductName,
                "quantity": item.Quantity,
                "returnQuantity": item.ReturnQuantity,
                "condition": item.Condition,
            }
            for item in request.Items
        ],
        "reason": request.Reason,
        "reasonDetails": request.ReasonDetails,
        "preferredDate": request.PreferredDate,
        "status": request.Status,
        "scheduledDate": request.ScheduledDate,
        "completedDate": request.CompletedDate,
        "vendorNotes": request.VendorNotes,
        "customerNotes": request.CustomerNotes,
        "refundAmount": request.RefundAmount,
        "createdDate": request.CreatedDate,
        "updatedDate": request.UpdatedDate,
    }
