import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from rental_hub.db.base import Base
from rental_hub.db.deps import get_rental_db
from rental_hub.db.session import engine_rental
from rental_hub.models.rental_models import AuditLog
from rental_hub.schemas.catalog import ProductCreateDto
from rental_hub.schemas.invoices import PayInvoiceDto
from rental_hub.schemas.orders import (
    CreateOrderDto,
    ProcessPickupDto,
    ProcessReturnDto,
    SchedulePickupDto,
    UpdateOrderStatusDto,
)
from rental_hub.schemas.returns import CreateReturnRequestDto, UpdateReturnRequestStatusDto
from rental_hub.services.catalog_service import create_product, require_product, serialize_product
from rental_hub.services.clock import utc_now
from rental_hub.services.errors import RentalError
from rental_hub.services.finance_service import get_invoice, list_invoices, pay_invoice, serialize_invoice
from rental_hub.services.identity_service import get_actor
from rental_hub.services.inventory_service import outstanding_units
from rental_hub.services.order_service import (
    calculate_late_fee,
    cancel_pickup,
    create_order,
    get_order_for_actor,
    list_eligible_orders,
    list_orders,
    list_pickups,
    list_returns,
    process_pickup,
    process_return,
    schedule_pickup,
    serialize_order,
    update_order_status,
)
from rental_hub.services.return_request_service import (
    create_return_request,
    get_return_request_for_actor,
    list_my_return_requests,
    list_vendor_return_requests,
    serialize_return_request,
    update_return_request_status,
)

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

if _env_flag("RENTAL_HUB_CREATE_SCHEMA"):
    Base.metadata.create_all(bind=engine_rental)


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=utc_now(),
        )
    )


def _require_actor_or_401(db: Session, user_id: int | None) -> dict:
    actor = get_actor(db, user_id)
    if not actor:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return actor


def _http_error(exc: RentalError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/products", status_code=201)
def create_product_route(
    payload: ProductCreateDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        product = create_product(db, actor, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Product", product.ProductID, "CreateProduct", f"Stock {product.Stock}", user_id=actor["userID"])
    db.commit()
    return serialize_product(product)


@app.get("/api/products/{product_id}")
def get_product_route(product_id: int, db: Session = Depends(get_rental_db)):
    try:
        product = require_product(db, product_id)
    except RentalError as exc:
        raise _http_error(exc) from exc
    data = serialize_product(product)
    data["outstandingUnits"] = outstanding_units(db, product_id)
    return data


@app.post("/api/orders", status_code=201)
def create_order_route(
    payload: CreateOrderDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = create_order(db, actor, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "CreateOrder", f"Created {order.OrderNumber}", user_id=actor["userID"])
    db.commit()
    return serialize_order(order)


@app.get("/api/orders")
def list_orders_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    return [serialize_order(order) for order in list_orders(db, actor)]


@app.get("/api/orders/{order_id}")
def get_order_route(order_id: int, db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = get_order_for_actor(db, actor, order_id)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return serialize_order(order)


@app.put("/api/orders/{order_id}/status")
def update_order_status_route(
    order_id: int,
    payload: UpdateOrderStatusDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = update_order_status(db, actor, order_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "UpdateStatus", f"Status {order.Status}", user_id=actor["userID"])
    db.commit()
    return serialize_order(order)


@app.get("/api/pickups")
def list_pickups_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        orders = list_pickups(db, actor)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return [serialize_order(order) for order in orders]


@app.put("/api/pickups/{order_id}/schedule")
def schedule_pickup_route(
    order_id: int,
    payload: SchedulePickupDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = schedule_pickup(db, actor, order_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "SchedulePickup", f"Pickup {order.PickupDate}", user_id=actor["userID"])
    db.commit()
    return {"message": "Pickup scheduled successfully", "order": serialize_order(order)}


@app.put("/api/pickups/{order_id}/process")
def process_pickup_route(
    order_id: int,
    payload: ProcessPickupDto | None = None,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = process_pickup(db, actor, order_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "ProcessPickup", f"Order {order.OrderNumber} picked up", user_id=actor["userID"])
    db.commit()
    return {"message": "Pickup processed successfully", "order": serialize_order(order)}


@app.delete("/api/pickups/{order_id}")
def cancel_pickup_route(order_id: int, db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = cancel_pickup(db, actor, order_id)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "CancelPickup", f"Status {order.Status}", user_id=actor["userID"])
    db.commit()
    return {"message": "Pickup cancelled successfully", "order": serialize_order(order)}


@app.get("/api/returns")
def list_returns_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        return list_returns(db, actor)
    except RentalError as exc:
        raise _http_error(exc) from exc


@app.get("/api/returns/eligible-orders")
def eligible_orders_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    return [serialize_order(order) for order in list_eligible_orders(db, actor)]


@app.get("/api/returns/my-requests")
def my_return_requests_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    return [serialize_return_request(request) for request in list_my_return_requests(db, actor)]


@app.get("/api/returns/requests")
def vendor_return_requests_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        requests = list_vendor_return_requests(db, actor)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return [serialize_return_request(request) for request in requests]


@app.post("/api/returns/request", status_code=201)
def create_return_request_route(
    payload: CreateReturnRequestDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        request = create_return_request(db, actor, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(
        db,
        "ReturnRequest",
        request.ReturnRequestID,
        "CreateReturnRequest",
        f"{request.RequestNumber} for {request.OrderNumber}",
        user_id=actor["userID"],
    )
    db.commit()
    return serialize_return_request(request)


@app.get("/api/returns/request/{request_id}")
def get_return_request_route(request_id: int, db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        request = get_return_request_for_actor(db, actor, request_id)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return serialize_return_request(request)


@app.put("/api/returns/request/{request_id}/status")
def update_return_request_status_route(
    request_id: int,
    payload: UpdateReturnRequestStatusDto,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        request = update_return_request_status(db, actor, request_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "ReturnRequest", request.ReturnRequestID, "UpdateStatus", f"Status {request.Status}", user_id=actor["userID"])
    db.commit()
    return serialize_return_request(request)


@app.put("/api/returns/{order_id}/process")
def process_return_route(
    order_id: int,
    payload: ProcessReturnDto | None = None,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        order = process_return(db, actor, order_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Order", order.OrderID, "ProcessReturn", f"Order {order.OrderNumber} returned", user_id=actor["userID"])
    db.commit()
    return {"message": "Return processed successfully", "order": serialize_order(order)}


@app.get("/api/returns/{order_id}/late-fee")
def late_fee_route(order_id: int, db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        return calculate_late_fee(db, actor, order_id)
    except RentalError as exc:
        raise _http_error(exc) from exc


@app.get("/api/invoices")
def list_invoices_route(db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    return [serialize_invoice(invoice) for invoice in list_invoices(db, actor)]


@app.get("/api/invoices/{invoice_id}")
def get_invoice_route(invoice_id: int, db: Session = Depends(get_rental_db), x_user_id: int | None = Header(None, alias="X-User-ID")):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        invoice = get_invoice(db, actor, invoice_id)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return serialize_invoice(invoice)


@app.put("/api/invoices/{invoice_id}/pay")
def pay_invoice_route(
    invoice_id: int,
    payload: PayInvoiceDto | None = None,
    db: Session = Depends(get_rental_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
):
    actor = _require_actor_or_401(db, x_user_id)
    try:
        invoice = pay_invoice(db, actor, invoice_id, payload)
    except RentalError as exc:
        raise _http_error(exc) from exc
    log_audit(db, "Invoice", invoice.InvoiceID, "PayInvoice", f"Paid {invoice.InvoiceNumber}", user_id=actor["userID"])
    db.commit()
    return {"message": "Payment recorded successfully", "invoice": serialize_invoice(invoice)}
