# Overview: Service-layer operations for purchase orders; restocking through the batch coordinator.

"""
Purchasing Service

WHY: A purchase order records stock that has been ordered, not stock that
exists. Stock moves only when the order is received.

LIFECYCLE:
1. pending: created; no stock effect
2. received: every item incremented exactly once; received_at set
3. cancelled: closed before receipt; no stock effect

EXACTLY-ONCE RECEIPT:
The pending -> received transition is claimed with the version_id check
before any stock moves. Of two concurrent receipts only one claim
succeeds; the other retries, sees status 'received' and fails with
InvalidStateError.
- transaction mode: claim + increments + commit are one transaction; any
  failure rolls all of it back and the order stays pending.
- compensate mode: the claim commits first, increments commit per line, and
  on failure the applied increments are compensated and the claim is
  released back to pending.

DELETION (flagged asymmetry):
Deleting an order never touches stock. A pending order never applied any;
a received order keeps its increment (received stock is final). This
differs from invoice deletion, which restores stock.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem
from ..errors import InvalidStateError, NotFoundError, PartialFailureError, StockError
from ..validation import ValidationError, coerce_int, require_positive_quantity
from ..time_utils import utcnow
from ..config import BATCH_MODE_COMPENSATE
from .concurrency import lock_for_update, run_with_retry
from .stock_batch import StockLine, apply_stock_lines, current_batch_mode
from .stock_service import get_product
from .supplier_service import get_supplier


STATUS_PENDING = "pending"
STATUS_RECEIVED = "received"
STATUS_CANCELLED = "cancelled"

STATUSES = {STATUS_PENDING, STATUS_RECEIVED, STATUS_CANCELLED}


def create_purchase_order(supplier_id, items, notes: str | None = None) -> PurchaseOrder:
    """
    Create a pending purchase order. No stock effect.

    Raises:
        ValidationError: missing supplier/items, non-positive quantity
        NotFoundError: supplier or a product does not exist
    """
    if supplier_id is None or not isinstance(items, list) or not items:
        raise ValidationError("Supplier and items are required.")

    supplier = get_supplier(coerce_int(supplier_id, "supplier_id"))

    order_items = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict) or item.get("product_id") is None:
            raise ValidationError(f"Line {position}: product_id is required")
        product_id = coerce_int(item["product_id"], "product_id")
        quantity = require_positive_quantity(item.get("quantity"))
        get_product(product_id)
        order_items.append(PurchaseOrderItem(position=position, product_id=product_id, quantity=quantity))

    order = PurchaseOrder(supplier_id=supplier.id, status=STATUS_PENDING, notes=notes)
    order.items.extend(order_items)
    db.session.add(order)
    db.session.commit()
    return order


def get_purchase_order(order_id: int, *, lock: bool = False) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.populate_existing().first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_purchase_orders(status: str | None = None) -> list[PurchaseOrder]:
    q = db.session.query(PurchaseOrder)
    if status is not None:
        if status not in STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(STATUSES))}")
        q = q.filter(PurchaseOrder.status == status)
    return q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()


def _claim_for_receipt(order_id: int) -> tuple[PurchaseOrder, list[StockLine]]:
    order = get_purchase_order(order_id, lock=True)
    if order.status != STATUS_PENDING:
        raise InvalidStateError(
            f"Order already processed (status {order.status})",
            details={"order_id": order.id, "status": order.status},
        )
    lines = [StockLine(item.product_id, item.quantity) for item in order.items]
    order.status = STATUS_RECEIVED
    order.received_at = utcnow()
    db.session.flush()
    return order, lines


def _release_claim(order_id: int) -> None:
    def _op():
        order = get_purchase_order(order_id, lock=True)
        order.status = STATUS_PENDING
        order.received_at = None
        db.session.commit()

    run_with_retry(_op)


def _release_claim_after_failure(order_id: int, failure: Exception) -> None:
    """
    Put a claimed order back to pending after its stock batch failed.

    A release that cannot be applied (e.g. the order was deleted meanwhile) is
    logged and attached to the batch's PartialFailureError; the batch failure
    is always what the caller sees.
    """
    try:
        _release_claim(order_id)
    except (StockError, SQLAlchemyError) as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Could not release receipt claim on purchase order %s (%s)", order_id, exc,
        )
        if isinstance(failure, PartialFailureError):
            failure.add_compensation_failure({
                "step": "release_claim",
                "order_id": order_id,
                "error": type(exc).__name__,
                "reason": str(exc),
            })


def receive_purchase_order(order_id: int) -> PurchaseOrder:
    """
    Receive a pending order: increment every item exactly once, then mark received.

    Raises:
        NotFoundError: the order (or one of its products) does not exist
        InvalidStateError: the order is not pending
        PartialFailureError: an increment failed; the order stays pending and
            the error names the failed product
    """
    label = f"purchase order {order_id}"

    if current_batch_mode() == BATCH_MODE_COMPENSATE:
        def _claim():
            result = _claim_for_receipt(order_id)
            db.session.commit()
            return result

        order, lines = run_with_retry(_claim)
        try:
            apply_stock_lines(lines, label=label)
        except (StockError, ValidationError) as exc:
            _release_claim_after_failure(order_id, exc)
            raise
        order = get_purchase_order(order_id)
    else:
        def _op():
            order, lines = _claim_for_receipt(order_id)
            try:
                apply_stock_lines(lines, label=label)
            except (StockError, ValidationError):
                # Drops the claim too; the order stays pending
                db.session.rollback()
                raise
            db.session.commit()
            return order

        order = run_with_retry(_op)

    current_app.logger.info("Received purchase order %s (%s line(s))", order.id, len(order.items))
    return order


def cancel_purchase_order(order_id: int) -> PurchaseOrder:
    """pending -> cancelled. No stock effect."""
    def _op():
        order = get_purchase_order(order_id, lock=True)
        if order.status != STATUS_PENDING:
            raise InvalidStateError(
                f"Only pending orders can be cancelled (status {order.status})",
                details={"order_id": order.id, "status": order.status},
            )
        order.status = STATUS_CANCELLED
        db.session.commit()
        return order

    return run_with_retry(_op)


def delete_purchase_order(order_id: int) -> dict:
    """
    Remove an order record. Never changes stock, whatever the status.
    """
    def _op():
        order = get_purchase_order(order_id, lock=True)
        status = order.status
        db.session.delete(order)
        db.session.commit()
        return status

    status = run_with_retry(_op)
    if status == STATUS_RECEIVED:
        current_app.logger.info(
            "Deleted received purchase order %s; its stock increment is kept", order_id,
        )
    return {
        "message": "Order deleted successfully",
        "order_id": order_id,
        "status": status,
        "stock_reversed": False,
    }
