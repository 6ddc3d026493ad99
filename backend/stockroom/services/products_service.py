# backend/stockroom/services/products_service.py
"""
Products Service

Product metadata CRUD plus the stock in/out wrappers.

QUANTITY: create_product sets the initial quantity. After that, quantity is
not a writable field; every change goes through stock_service.adjust_stock.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, Supplier, InvoiceItem, PurchaseOrder, PurchaseOrderItem
from ..errors import NotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    require_positive_quantity,
    ConflictError,
)
from .concurrency import run_with_retry
from .stock_service import adjust_stock, get_product

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category", "supplier_id",
        "price", "cost_price", "quantity", "reorder_level", "expiry_date", "is_active",
    },
    required_on_create={"sku", "name"},
)

# quantity is deliberately absent: stock moves only through adjust_stock
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category", "supplier_id",
        "price", "cost_price", "reorder_level", "expiry_date", "is_active",
    },
)

PRODUCT_MUTABLE_FIELDS = PRODUCT_UPDATE_POLICY.writable_fields


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _require_supplier(supplier_id: int | None) -> None:
    if supplier_id is None:
        return
    if db.session.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier not found: {supplier_id}", details={"supplier_id": supplier_id})


def _require_unique_sku(sku: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A product with this SKU already exists.")


def create_product(payload: dict) -> Product:
    """
    Create a product with its initial quantity.

    Raises:
        ValidationError: bad or missing fields, negative prices/quantities
        ConflictError: duplicate SKU (case-insensitive)
        NotFoundError: supplier_id does not exist
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)

    _require_unique_sku(patch["sku"])
    _require_supplier(patch.get("supplier_id"))

    if patch.get("reorder_level") is None:
        patch["reorder_level"] = current_app.config.get("DEFAULT_REORDER_LEVEL", 10)
    for field in ("price", "cost_price", "quantity"):
        if patch.get(field) is None:
            patch[field] = 0
    if patch.get("category") is None:
        patch["category"] = "general"

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A product with this SKU already exists.")
    return product


def list_products(*, category: str | None = None, active_only: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if category:
        q = q.filter(Product.category == category)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.created_at.desc(), Product.id.desc()).all()


def list_low_stock_products() -> list[Product]:
    """Active products at or below their reorder level."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.quantity <= Product.reorder_level,
        )
        .order_by(Product.quantity.asc(), Product.id.asc())
        .all()
    )


def update_product(product_id: int, payload: dict) -> Product:
    """
    Update product metadata.

    Runs with optimistic locking: a concurrent stock adjustment bumps
    version_id, the stale UPDATE fails, and the patch is re-applied to a
    fresh row. quantity is never part of the UPDATE.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        product = get_product(product_id, refresh=True)
        if "sku" in patch:
            _require_unique_sku(patch["sku"], exclude_id=product.id)
        if "supplier_id" in patch:
            _require_supplier(patch["supplier_id"])
        apply_product_patch(product, patch)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("A product with this SKU already exists.")
        return product

    return run_with_retry(_op)


def _has_pending_order_reference(product_id: int) -> bool:
    return db.session.query(PurchaseOrderItem.id).join(PurchaseOrder).filter(
        PurchaseOrderItem.product_id == product_id,
        PurchaseOrder.status == "pending",
    ).first() is not None


def _has_invoice_reference(product_id: int) -> bool:
    return db.session.query(InvoiceItem.id).filter(
        InvoiceItem.product_id == product_id,
    ).first() is not None


def delete_product(product_id: int, *, hard: bool = False) -> Product:
    """
    Delete a product once nothing open refers to it.

    - soft (default): clears is_active; refused while a pending purchase order references it
    - hard: removes the row; also refused while any invoice references it,
      since deleting that invoice must be able to restore stock
    """
    def _op():
        product = get_product(product_id)
        if _has_pending_order_reference(product.id):
            raise ConflictError("Product is referenced by a pending purchase order.")
        if hard:
            if _has_invoice_reference(product.id):
                raise ConflictError("Product is referenced by an invoice.")
            db.session.delete(product)
        else:
            product.is_active = False
        db.session.commit()
        return product

    return run_with_retry(_op)


def add_stock(product_id: int, quantity) -> Product:
    """Stock IN: positive quantity only."""
    qty = require_positive_quantity(quantity)
    return adjust_stock(product_id, qty)


def remove_stock(product_id: int, quantity) -> Product:
    """Stock OUT: positive quantity only; fails with InsufficientStockError below the floor."""
    qty = require_positive_quantity(quantity)
    return adjust_stock(product_id, -qty)
