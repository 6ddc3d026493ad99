"""
Sales Service - invoices and their stock effect

WHY: An invoice is the record of a stock decrement. Creating one decrements
every item through the batch coordinator; deleting one restores every item.
The restore lives here, next to the decrement it reverses, not in a model hook.

ASYMMETRY (intentional):
- create_invoice is blocked by insufficient stock (nothing is written)
- delete_invoice never fails because of stock restoration; each failed
  restore is logged and reported, and the record is removed regardless

NUMBERING: INV-<year>-<5-digit>, allocated from a dedicated atomic counter
inside the same transaction as the invoice row.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Invoice, InvoiceItem
from ..errors import InsufficientStockError, NotFoundError, PartialFailureError
from ..validation import (
    CENT,
    MAX_PRICE,
    ValidationError,
    coerce_int,
    coerce_money,
    require_non_negative_price,
    require_positive_quantity,
)
from ..config import BATCH_MODE_COMPENSATE
from .concurrency import run_with_retry
from .document_service import next_invoice_number
from .stock_batch import (
    StockLine,
    apply_stock_lines,
    apply_stock_lines_best_effort,
    compensate_stock_lines,
    current_batch_mode,
    run_batch_operation,
)
from .stock_service import get_product


PAYMENT_METHODS = {"cash", "card", "upi", "bank_transfer", "other"}

# Tax values above this are absolute amounts, at or below it percentages
TAX_PERCENT_CEILING = Decimal("100")


def compute_tax(subtotal: Decimal, tax) -> tuple[Decimal, Decimal]:
    """
    Resolve a tax value against a subtotal. Returns (tax_amount, total).

    - 0 < tax <= 100: percentage of subtotal (rounded half-up to cents)
    - tax > 100: absolute currency amount (rounded half-up to cents)
    - tax <= 0 or missing: no tax
    """
    tax_value = coerce_money(tax, "tax") if tax is not None else Decimal("0")

    if 0 < tax_value <= TAX_PERCENT_CEILING:
        tax_amount = (subtotal * tax_value / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    elif tax_value > TAX_PERCENT_CEILING:
        tax_amount = tax_value.quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        tax_amount = Decimal("0")

    return tax_amount, subtotal + tax_amount


def _price_items(items) -> tuple[list[dict], Decimal]:
    """
    Resolve products, check quantities and snapshot unit prices.

    A missing unit_price takes the product's current selling price. Stock
    coverage is checked by the coordinator's validation pass.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Customer name and items are required.")

    priced = []
    subtotal = Decimal("0")
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Line {index + 1}: item must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"Line {index + 1}: product_id is required")

        product_id = coerce_int(item["product_id"], "product_id")
        quantity = require_positive_quantity(item.get("quantity"))
        product = get_product(product_id)

        if item.get("unit_price") is not None:
            unit_price = require_non_negative_price(item["unit_price"])
        else:
            unit_price = Decimal(product.price or 0).quantize(CENT, rounding=ROUND_HALF_UP)

        line_total = unit_price * quantity
        subtotal += line_total
        priced.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price": unit_price,
            "line_total": line_total,
        })

    return priced, subtotal


def create_invoice(
    customer_name: str,
    items: list,
    tax=0,
    *,
    payment_method: str = "cash",
    notes: str | None = None,
) -> Invoice:
    """
    Price the items, decrement stock for every item, then persist the invoice.

    Raises:
        ValidationError: blank customer, empty items, non-positive quantity, negative price
        NotFoundError: an item's product does not exist
        InsufficientStockError: on-hand cannot cover an item (nothing is written)
        PartialFailureError: a line failed for a reason other than stock (e.g. product removed mid-batch)
            or, in compensate mode, the invoice row could not be saved after stock moved;
            compensation_failures lists any decrement that could not be reversed
    """
    if not customer_name or not str(customer_name).strip():
        raise ValidationError("Customer name and items are required.")
    customer_name = str(customer_name).strip()
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")

    tax_value = coerce_money(tax, "tax") if tax is not None else Decimal("0")
    if tax_value > MAX_PRICE:
        raise ValidationError(f"tax cannot exceed {MAX_PRICE}")

    def _op():
        priced, subtotal = _price_items(items)
        tax_amount, total = compute_tax(subtotal, tax_value)

        lines = [
            StockLine(p["product_id"], -p["quantity"], p["unit_price"])
            for p in priced
        ]
        label = f"invoice for {customer_name!r}"
        try:
            apply_stock_lines(lines, label=label)
        except PartialFailureError as exc:
            if isinstance(exc.cause, InsufficientStockError):
                raise InsufficientStockError(
                    f"Insufficient stock for product: {exc.failed_product_id}",
                    details=exc.to_dict(),
                ) from exc
            raise

        try:
            invoice = Invoice(
                invoice_number=next_invoice_number(),
                customer_name=customer_name,
                subtotal=subtotal,
                tax=tax_value,
                tax_amount=tax_amount,
                total=total,
                paid=False,
                payment_method=payment_method,
                notes=notes,
            )
            for position, p in enumerate(priced, start=1):
                invoice.items.append(InvoiceItem(position=position, **p))
            db.session.add(invoice)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            if current_batch_mode() != BATCH_MODE_COMPENSATE:
                raise
            # Stock lines are already committed; take them back out
            failures = compensate_stock_lines(lines, label=label)
            current_app.logger.info(
                "Compensated stock for %s after the invoice could not be saved (%s); %s reversal(s) failed",
                label, type(exc).__name__, len(failures),
            )
            raise PartialFailureError(
                f"Invoice could not be saved: {type(exc).__name__}",
                applied=lines,
                failed={"step": "save_invoice", "error": type(exc).__name__, "reason": str(exc)},
                compensation_failures=failures,
                cause=exc,
            ) from exc

        current_app.logger.info(
            "Created invoice %s (%s line(s), total %s)",
            invoice.invoice_number, len(priced), invoice.total,
        )
        return invoice

    return run_batch_operation(_op)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices() -> list[Invoice]:
    return db.session.query(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def _remove_invoice_record(invoice_id: int) -> tuple[list[StockLine], str]:
    """
    Delete the invoice row and return the stock lines that restore it.

    The DELETE carries the version_id check, so of two concurrent deletions
    only one removes the row; the other fails with StaleDataError and on
    retry sees NotFoundError. Stock is restored only by the winner.
    """
    invoice = get_invoice(invoice_id)
    lines = [StockLine(item.product_id, item.quantity) for item in invoice.items]
    number = invoice.invoice_number
    db.session.delete(invoice)
    db.session.flush()
    return lines, number


def delete_invoice(invoice_id: int) -> dict:
    """
    Delete an invoice and restore stock for every item, best effort.

    Restoration failures (e.g. the product was removed) are logged and listed
    in the acknowledgement; they never block removal of the record.

    Raises:
        NotFoundError: the invoice does not exist
    """
    if current_batch_mode() == BATCH_MODE_COMPENSATE:
        def _claim():
            result = _remove_invoice_record(invoice_id)
            db.session.commit()
            return result

        lines, number = run_with_retry(_claim)
        failures = apply_stock_lines_best_effort(lines, label=f"invoice {number}")
    else:
        def _op():
            lines, number = _remove_invoice_record(invoice_id)
            failures = apply_stock_lines_best_effort(lines, label=f"invoice {number}")
            db.session.commit()
            return lines, number, failures

        lines, number, failures = run_with_retry(_op)

    current_app.logger.info(
        "Deleted invoice %s; restored %s of %s line(s)",
        number, len(lines) - len(failures), len(lines),
    )
    return {
        "message": "Invoice deleted and stock restored",
        "invoice_id": invoice_id,
        "invoice_number": number,
        "lines": [line.to_dict() for line in lines],
        "restore_failures": failures,
    }


def mark_invoice_paid(invoice_id: int, payment_method: str | None = None) -> Invoice:
    """Flip paid to True. No stock effect; idempotent."""
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")

    def _op():
        invoice = get_invoice(invoice_id)
        if invoice.paid and (payment_method is None or invoice.payment_method == payment_method):
            return invoice
        invoice.paid = True
        if payment_method is not None:
            invoice.payment_method = payment_method
        db.session.commit()
        return invoice

    return run_with_retry(_op)
