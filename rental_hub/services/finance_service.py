from __future__ import annotations

import json
import logging
import math
import os
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rental_hub.models.rental_models import Invoice, Order, Payment, User
from rental_hub.schemas.invoices import PayInvoiceDto
from rental_hub.services.clock import utc_now
from rental_hub.services.errors import ForbiddenError, InvalidTransitionError, NotFoundError
from rental_hub.services.identity_service import is_admin, is_owner
from rental_hub.services.sequence_service import INVOICE_SEQUENCE, generate_number


LOGGER = logging.getLogger("rental_hub.finance")

LATE_FEE_RATE = float(os.environ.get("RENTAL_LATE_FEE_RATE") or "0.05")
INVOICE_DUE_DAYS = int(os.environ.get("RENTAL_INVOICE_DUE_DAYS") or "15")
SECONDS_PER_DAY = 24 * 60 * 60


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def daily_rate_total(order: Order) -> float:
    return sum(float(item.DailyRate or 0) * int(item.Quantity or 0) for item in order.OrderItems)


def compute_late_fee(order: Order, now: datetime | None = None) -> dict:
    """Late fee owed if the order were settled at ``now``.

    Always recomputed: the figure grows with every day past the return date.
    """
    current = now or utc_now()
    return_date = order.ReturnDate
    days_late = 0
    late_fee = 0
    if return_date is not None and current > return_date:
        days_late = math.ceil((current - return_date).total_seconds() / SECONDS_PER_DAY)
        late_fee = round_half_up(daily_rate_total(order) * LATE_FEE_RATE * days_late)
    return {
        "daysLate": days_late,
        "lateFee": late_fee,
        "returnDate": return_date,
        "isOverdue": days_late > 0,
    }


def create_invoice(db: Session, order: Order, now: datetime | None = None) -> Invoice:
    issued = now or utc_now()
    lines = [
        {
            "productName": item.ProductName,
            "quantity": item.Quantity,
            "rentalDays": item.RentalDays,
            "dailyRate": float(item.DailyRate or 0),
            "amount": float(item.Subtotal or 0),
        }
        for item in order.OrderItems
    ]
    total = float(order.TotalAmount or 0)
    invoice = Invoice(
        InvoiceNumber=generate_number(db, INVOICE_SEQUENCE, "INV"),
        OrderID=order.OrderID,
        OrderNumber=order.OrderNumber,
        CustomerID=order.CustomerID,
        CustomerName=order.CustomerName,
        VendorID=order.VendorID,
        VendorName=order.VendorName,
        LineItems=json.dumps(lines, ensure_ascii=True),
        Subtotal=float(order.Subtotal or 0),
        TaxAmount=float(order.TaxAmount or 0),
        TotalAmount=total,
        PaidAmount=0,
        BalanceAmount=total,
        Status="pending",
        IssueDate=issued,
        DueDate=issued + timedelta(days=INVOICE_DUE_DAYS),
        CreatedDate=issued,
        UpdatedDate=issued,
    )
    db.add(invoice)
    db.flush()
    LOGGER.info("Invoice created invoice=%s order=%s total=%.2f", invoice.InvoiceNumber, order.OrderNumber, total)
    return invoice


def get_invoice(db: Session, actor: dict[str, Any], invoice_id: int) -> Invoice:
    invoice = db.get(Invoice, int(invoice_id))
    if not invoice:
        raise NotFoundError("Invoice not found")
    if not is_admin(actor) and not is_owner(actor, invoice.CustomerID) and not is_owner(actor, invoice.VendorID):
        raise ForbiddenError("Not authorized")
    return invoice


def list_invoices(db: Session, actor: dict[str, Any]) -> list[Invoice]:
    stmt = select(Invoice).order_by(Invoice.CreatedDate.desc(), Invoice.InvoiceID.desc())
    if actor.get("role") == "vendor":
        stmt = stmt.where(Invoice.VendorID == actor["userID"])
    elif not is_admin(actor):
        stmt = stmt.where(Invoice.CustomerID == actor["userID"])
    return list(db.execute(stmt).scalars().all())


def pay_invoice(db: Session, actor: dict[str, Any], invoice_id: int, payload: PayInvoiceDto | None = None, now: datetime | None = None) -> Invoice:
    paid_at = now or utc_now()
    invoice = db.get(Invoice, int(invoice_id))
    if not invoice:
        raise NotFoundError("Invoice not found")
    if not is_admin(actor) and not is_owner(actor, invoice.CustomerID):
        raise ForbiddenError("Not authorized")
    if invoice.Status == "paid":
        LOGGER.warning("Rejected second payment invoice=%s actor=%s", invoice.InvoiceNumber, actor.get("userID"))
        raise InvalidTransitionError("Invoice is already paid")
    if invoice.Status == "cancelled":
        raise InvalidTransitionError("Invoice is cancelled")

    total = float(invoice.TotalAmount or 0)
    # The status guard in the WHERE clause lets only one payer through.
    result = db.execute(
        update(Invoice)
        .where(Invoice.InvoiceID == invoice.InvoiceID)
        .where(Invoice.Status != "paid")
        .values(Status="paid", PaidAmount=total, BalanceAmount=0, PaidDate=paid_at, UpdatedDate=paid_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransitionError("Invoice is already paid")
    db.refresh(invoice)

    method = payload.method if payload else "card"
    db.add(
        Payment(
            InvoiceID=invoice.InvoiceID,
            InvoiceNumber=invoice.InvoiceNumber,
            Amount=total,
            Method=method,
            Reference=payload.reference if payload else None,
            Notes=payload.notes if payload else None,
        )
    )

    order = db.get(Order, invoice.OrderID)
    vendor_id = invoice.VendorID
    if order:
        order.PaidAmount = total
        order.UpdatedDate = paid_at
        vendor_id = order.VendorID or vendor_id
    if vendor_id:
        db.execute(
            update(User)
            .where(User.UserID == vendor_id)
            .values(
                WalletBalance=User.WalletBalance + total,
                TotalRevenue=User.TotalRevenue + total,
            )
            .execution_options(synchronize_session=False)
        )
        vendor = db.get(User, vendor_id)
        if vendor is not None:
            db.refresh(vendor)
    db.flush()
    LOGGER.info("Invoice paid invoice=%s amount=%.2f vendor_id=%s method=%s", invoice.InvoiceNumber, total, vendor_id, method)
    return invoice


def serialize_invoice(invoice: Invoice) -> dict:
    try:
        lines = json.loads(invoice.LineItems) if invoice.LineItems else []
    except (TypeError, ValueError, json.JSONDecodeError):
        lines = []
    return {
        "invoiceID": invoice.InvoiceID,
        "invoiceNumber": invoice.InvoiceNumber,
        "orderID": invoice.OrderID,
        "orderNumber": invoice.OrderNumber,
        "customerID": invoice.CustomerID,
        "customerName": invoice.CustomerName,
        "vendorID": invoice.VendorID,
        "vendorName": invoice.VendorName,
        "items": lines,
        "subtotal": invoice.Subtotal,
        "taxAmount": invoice.TaxAmount,
        "totalAmount": invoice.TotalAmount,
        "paidAmount": invoice.PaidAmount,
        "balanceAmount": invoice.BalanceAmount,
        "status": invoice.Status,
        "issueDate": invoice.IssueDate,
        "dueDate": invoice.DueDate,
        "paidDate": invoice.PaidDate,
    }
