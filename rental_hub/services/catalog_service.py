from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from rental_hub.models.rental_models import Product
from rental_hub.schemas.catalog import ProductCreateDto
from rental_hub.services.clock import utc_now
from rental_hub.services.errors import NotFoundError, RentalValidationError
from rental_hub.services.identity_service import STAFF_ROLES, require_role


LOGGER = logging.getLogger("rental_hub.catalog")


def get_product(db: Session, product_id: int) -> Product | None:
    return db.get(Product, int(product_id))


def require_product(db: Session, product_id: int) -> Product:
    product = get_product(db, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(db: Session, actor: dict[str, Any], payload: ProductCreateDto) -> Product:
    require_role(actor, STAFF_ROLES)
    if payload.stock < 0:
        raise RentalValidationError("stock must be zero or greater.")
    name = (payload.name or "").strip()
    if not name:
        raise RentalValidationError("Product name is required.")

    product = Product(
        Name=name,
        Description=payload.description,
        Category=payload.category,
        DailyRate=payload.dailyRate,
        WeeklyRate=payload.weeklyRate,
        MonthlyRate=payload.monthlyRate,
        Deposit=payload.deposit,
        Stock=payload.stock,
        Available=payload.stock,
        VendorID=actor["userID"],
        VendorName=actor.get("name"),
        Status=payload.status,
        CreatedDate=utc_now(),
        UpdatedDate=utc_now(),
    )
    db.add(product)
    db.flush()
    LOGGER.info("Product created product_id=%s vendor_id=%s stock=%s", product.ProductID, product.VendorID, product.Stock)
    return product


def increment_available(db: Session, product_id: int, delta: int) -> Product:
    """Atomically shift a product's available counter by ``delta`` units.

    The arithmetic happens inside the UPDATE statement so two writers touching
    the same product cannot overwrite each other's change.
    """
    result = db.execute(
        update(Product)
        .where(Product.ProductID == int(product_id))
        .values(Available=Product.Available + int(delta), UpdatedDate=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product {product_id} not found")
    product = require_product(db, product_id)
    db.refresh(product)
    return product


def serialize_product(product: Product) -> dict:
    return {
        "productID": product.ProductID,
        "name": product.Name,
        "description": product.Description,
        "category": product.Category,
        "dailyRate": product.DailyRate,
        "weeklyRate": product.WeeklyRate,
        "monthlyRate": product.MonthlyRate,
        "deposit": product.Deposit,
        "stock": product.Stock,
        "available": product.Available,
        "vendorID": product.VendorID,
        "vendorName": product.VendorName,
        "status": product.Status,
        "createdDate": product.CreatedDate,
        "updatedDate": product.UpdatedDate,
    }
