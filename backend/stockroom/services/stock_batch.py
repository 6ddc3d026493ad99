# Overview: Service-layer coordinator that applies one business event's stock lines as a unit.

"""
Stock Batch Coordinator

WHY: An invoice or a purchase order changes several products at once. The
batch must look all-or-nothing to callers even though each line is its own
conditional update.

PASSES:
1. Validation (no writes): every product exists, every delta is a non-zero
   integer, unit prices are >= 0, and decrements are covered by current
   on-hand, aggregated per product. Any failure aborts with zero side effects.
2. Apply: lines run in caller order through the atomic adjustment.

MODES (config STOCK_BATCH_MODE):
- "transaction": all lines run in the caller's DB transaction. On failure the
  session is rolled back and PartialFailureError(rolled_back=True) is raised.
  The caller commits after persisting its own record, so the record and the
  stock effect land together.
- "compensate": each line commits on its own. On failure every applied line
  is reversed in strict reverse order. Reversals that cannot be applied are
  logged and reported in PartialFailureError.compensation_failures; they never
  replace the original failure.

GUARANTEE (best-effort, not ACID in compensate mode):
- success: all lines applied
- failure: zero lines applied (validation), or the pre-call state restored
  except for the reported compensation failures (apply)

The validation pass is an early exit only. Under contention a line can still
fail in the apply pass because the conditional decrement re-checks on-hand.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..config import BATCH_MODE_COMPENSATE, BATCH_MODE_TRANSACTION, BATCH_MODES
from ..extensions import db
from ..models import Product
from ..errors import (
    InsufficientStockError,
    NotFoundError,
    PartialFailureError,
    StockError,
)
from ..validation import ValidationError, coerce_int
from .concurrency import run_with_retry
from .stock_service import adjust_stock


@dataclass(frozen=True)
class StockLine:
    """One (product, signed delta) effect belonging to a business event."""
    product_id: int
    delta: int
    unit_price: Decimal | None = None

    def reversed(self) -> "StockLine":
        return StockLine(self.product_id, -self.delta, self.unit_price)

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "delta": self.delta}


def current_batch_mode() -> str:
    mode = current_app.config.get("STOCK_BATCH_MODE", BATCH_MODE_TRANSACTION)
    if mode not in BATCH_MODES:
        raise ValueError(f"Unknown STOCK_BATCH_MODE: {mode!r}")
    return mode


def run_batch_operation(func):
    """
    Run a flow that applies a stock batch.

    In transaction mode the whole flow is one DB transaction and is safe to
    retry from the top. In compensate mode lines are already committed when a
    later step fails, so the flow must not be replayed.
    """
    if current_batch_mode() == BATCH_MODE_TRANSACTION:
        return run_with_retry(func)
    return func()


def _failure_entry(index: int, line: StockLine, exc: Exception) -> dict:
    return {
        "line": index + 1,
        "product_id": line.product_id,
        "delta": line.delta,
        "error": type(exc).__name__,
        "reason": str(exc),
    }


def validate_stock_lines(lines: Sequence[StockLine]) -> dict[int, Product]:
    """
    Validation pass. Returns the resolved products keyed by id.

    Raises ValidationError, NotFoundError or InsufficientStockError without
    writing anything.
    """
    if not lines:
        raise ValidationError("At least one line is required")

    products: dict[int, Product] = {}
    demand: dict[int, int] = {}

    for index, line in enumerate(lines):
        product_id = coerce_int(line.product_id, "product_id")
        delta = coerce_int(line.delta, "quantity")
        if delta == 0:
            raise ValidationError(f"Line {index + 1}: quantity must be a positive integer")
        if line.unit_price is not None and line.unit_price < 0:
            raise ValidationError(f"Line {index + 1}: unit price must be >= 0")

        if product_id not in products:
            product = db.session.get(Product, product_id, populate_existing=True)
            if product is None:
                raise NotFoundError(
                    f"Product not found: {product_id}",
                    details={"product_id": product_id, "line": index + 1},
                )
            products[product_id] = product

        if delta < 0:
            demand[product_id] = demand.get(product_id, 0) - delta

    insufficient = []
    for product_id, qty in demand.items():
        product = products[product_id]
        if product.quantity < qty:
            insufficient.append({
                "product_id": product_id,
                "product_name": product.name,
                "requested_quantity": qty,
                "on_hand": product.quantity,
            })

    if insufficient:
        first = insufficient[0]
        raise InsufficientStockError(
            f"Insufficient stock for product: {first['product_name']}",
            details={"items": insufficient},
        )

    return products


def compensate_stock_lines(applied: Sequence[StockLine], *, label: str) -> list[dict]:
    """
    Reverse already-applied lines in strict reverse order, each in its own commit.

    Returns the reversals that could not be applied. Each one is logged.
    """
    failures: list[dict] = []
    for index in range(len(applied) - 1, -1, -1):
        reversal = applied[index].reversed()
        try:
            adjust_stock(reversal.product_id, reversal.delta, commit=True)
        except (StockError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Compensation failed for %s: product %s delta %s (%s)",
                label, reversal.product_id, reversal.delta, exc,
            )
            failures.append(_failure_entry(index, reversal, exc))
    return failures


def _apply_in_transaction(lines: Sequence[StockLine], *, label: str) -> list[Product]:
    applied: list[StockLine] = []
    updated: list[Product] = []
    for index, line in enumerate(lines):
        try:
            updated.append(adjust_stock(line.product_id, line.delta, commit=False))
        except StockError as exc:
            db.session.rollback()
            current_app.logger.info(
                "Rolled back stock batch for %s after line %s failed (%s)",
                label, index + 1, exc,
            )
            raise PartialFailureError(
                f"Stock batch failed at line {index + 1}: {exc}",
                applied=applied,
                failed=_failure_entry(index, line, exc),
                rolled_back=True,
                cause=exc,
            ) from exc
        applied.append(line)
    return updated


def _apply_with_compensation(lines: Sequence[StockLine], *, label: str) -> list[Product]:
    applied: list[StockLine] = []
    updated: list[Product] = []
    for index, line in enumerate(lines):
        try:
            updated.append(adjust_stock(line.product_id, line.delta, commit=True))
        except (StockError, SQLAlchemyError) as exc:
            db.session.rollback()
            failures = compensate_stock_lines(applied, label=label)
            current_app.logger.info(
                "Compensated stock batch for %s after line %s failed (%s); %s reversal(s) failed",
                label, index + 1, exc, len(failures),
            )
            raise PartialFailureError(
                f"Stock batch failed at line {index + 1}: {exc}",
                applied=applied,
                failed=_failure_entry(index, line, exc),
                compensation_failures=failures,
                cause=exc,
            ) from exc
        applied.append(line)
    return updated


def apply_stock_lines(lines: Sequence[StockLine], *, label: str) -> list[Product]:
    """
    Validate, then apply every line in order. Returns the updated products.

    In transaction mode nothing is committed here; the caller commits.
    """
    lines = list(lines)
    validate_stock_lines(lines)

    if current_batch_mode() == BATCH_MODE_COMPENSATE:
        return _apply_with_compensation(lines, label=label)
    return _apply_in_transaction(lines, label=label)


def apply_stock_lines_best_effort(lines: Sequence[StockLine], *, label: str) -> list[dict]:
    """
    Apply every line independently; a failing line never stops the others.

    Used for restorations that must not block the caller (invoice deletion).
    Returns the failed lines, each of which is logged. In transaction mode
    the successful lines are left for the caller to commit.
    """
    commit = current_batch_mode() == BATCH_MODE_COMPENSATE
    failures: list[dict] = []
    for index, line in enumerate(lines):
        try:
            adjust_stock(line.product_id, line.delta, commit=commit)
        except StockError as exc:
            current_app.logger.warning(
                "Failed to restore stock for %s: product %s delta %s (%s)",
                label, line.product_id, line.delta, exc,
            )
            failures.append(_failure_entry(index, line, exc))
    return failures
