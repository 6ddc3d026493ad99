# Overview: Service-layer operations for the quantity store; the atomic stock adjustment primitive.

"""
Stock Adjustment Invariants (authoritative)

Quantity store:
- Product.quantity is the single on-hand counter per product.
- No other code path writes Product.quantity.

adjust_stock(product_id, delta):
- delta == 0: read only; NotFoundError if the product does not exist.
- delta > 0: UPDATE ... SET quantity = quantity + delta WHERE id = :id
  NotFoundError when no row matched.
- delta < 0: UPDATE ... SET quantity = quantity - n WHERE id = :id AND quantity >= n
  The check and the decrement are one statement, so two concurrent
  decrements cannot both pass a separate precondition and drive quantity
  negative. InsufficientStockError when no row matched; this covers both
  "missing" and "not enough" and callers that need the difference re-check.
- Exactly one persisted change per successful call, none on failure.
- Every successful change bumps version_id, so ORM-side metadata writes
  that raced with it fail with StaleDataError and are retried.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..errors import NotFoundError, InsufficientStockError, StockError
from ..validation import coerce_int
from .concurrency import run_with_retry


def get_product(product_id: int, *, refresh: bool = False) -> Product:
    product = db.session.get(Product, product_id, populate_existing=refresh)
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})
    return product


def get_quantity_on_hand(product_id: int) -> int:
    """Current stored quantity, read straight from the row."""
    qty = db.session.query(Product.quantity).filter(Product.id == product_id).scalar()
    if qty is None:
        raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})
    return int(qty)


def _adjust_stock_inner(product_id: int, delta: int) -> Product:
    """Core conditional update without retry or commit.

    Called by adjust_stock() and by the batch coordinator inside its own transaction.
    """
    if delta == 0:
        return get_product(product_id, refresh=True)

    stmt = update(Product).where(Product.id == product_id)
    if delta < 0:
        stmt = stmt.where(Product.quantity >= -delta)
    stmt = stmt.values(
        quantity=Product.quantity + delta,
        version_id=Product.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        if delta < 0:
            raise InsufficientStockError(
                "Insufficient stock or product not found",
                details={"product_id": product_id, "requested_quantity": -delta},
            )
        raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})

    return get_product(product_id, refresh=True)


def adjust_stock(product_id: int, delta: int, *, commit: bool = True) -> Product:
    """
    Change a product's on-hand quantity by a signed delta.

    commit=True (default): runs in its own transaction with retry on lock
    contention and commits.
    commit=False: the caller owns the transaction (batch coordinator).
    """
    product_id = coerce_int(product_id, "product_id")
    delta = coerce_int(delta, "delta")

    if not commit:
        return _adjust_stock_inner(product_id, delta)

    def _op():
        product = _adjust_stock_inner(product_id, delta)
        db.session.commit()
        return product

    try:
        return run_with_retry(_op)
    except StockError:
        # Nothing was written; end the (possibly begun) transaction
        db.session.rollback()
        raise
