"""
Batch coordinator tests: validation pass, apply pass, and both failure modes.
"""

import logging

import pytest

from stockroom.errors import (
    InsufficientStockError,
    NotFoundError,
    PartialFailureError,
)
from stockroom.extensions import db
from stockroom.services import stock_batch
from stockroom.services.stock_batch import StockLine, apply_stock_lines, validate_stock_lines
from stockroom.validation import ValidationError


def _failing_adjust(real_adjust, fail_on):
    """
    Wrap adjust_stock so the (product_id, delta) pairs in fail_on raise.

    Simulates another writer draining stock between validation and apply.
    """
    def _adjust(product_id, delta, *, commit=True):
        if (product_id, delta) in fail_on:
            raise fail_on[(product_id, delta)]
        return real_adjust(product_id, delta, commit=commit)
    return _adjust


def test_all_lines_applied(app, make_product, on_hand):
    a = make_product("B-A", quantity=10)
    b = make_product("B-B", quantity=10)

    apply_stock_lines([StockLine(a.id, -3), StockLine(b.id, 4)], label="test")
    db.session.commit()

    assert on_hand(a.id) == 7
    assert on_hand(b.id) == 14


def test_validation_failure_has_no_side_effects(app, make_product, on_hand):
    a = make_product("B-A", quantity=10)
    b = make_product("B-B", quantity=1)

    with pytest.raises(InsufficientStockError) as excinfo:
        apply_stock_lines([StockLine(a.id, -3), StockLine(b.id, -2)], label="test")

    assert excinfo.value.details["items"][0]["product_id"] == b.id
    assert on_hand(a.id) == 10
    assert on_hand(b.id) == 1


def test_demand_is_aggregated_per_product(app, make_product, on_hand):
    a = make_product("B-A", quantity=5)

    # Each line alone fits; together they do not
    with pytest.raises(InsufficientStockError):
        validate_stock_lines([StockLine(a.id, -3), StockLine(a.id, -3)])
    assert on_hand(a.id) == 5


def test_unknown_product_and_bad_lines(app, make_product):
    a = make_product("B-A", quantity=5)

    with pytest.raises(NotFoundError):
        validate_stock_lines([StockLine(a.id, -1), StockLine(424242, -1)])
    with pytest.raises(ValidationError):
        validate_stock_lines([])
    with pytest.raises(ValidationError):
        validate_stock_lines([StockLine(a.id, 0)])


def test_transaction_mode_rolls_back_applied_lines(transaction_app, make_product, on_hand, monkeypatch):
    a = make_product("B-A", quantity=10)
    b = make_product("B-B", quantity=10)

    monkeypatch.setattr(
        stock_batch, "adjust_stock",
        _failing_adjust(stock_batch.adjust_stock, {(b.id, -2): InsufficientStockError("drained")}),
    )

    with pytest.raises(PartialFailureError) as excinfo:
        apply_stock_lines([StockLine(a.id, -2), StockLine(b.id, -2)], label="test")

    err = excinfo.value
    assert err.rolled_back is True
    assert err.failed_product_id == b.id
    assert isinstance(err.cause, InsufficientStockError)
    assert on_hand(a.id) == 10
    assert on_hand(b.id) == 10


def test_compensate_mode_reverses_in_reverse_order(compensate_app, make_product, on_hand, monkeypatch):
    a = make_product("B-A", quantity=10)
    b = make_product("B-B", quantity=10)
    c = make_product("B-C", quantity=10)

    calls = []
    real_adjust = stock_batch.adjust_stock

    def _recording(product_id, delta, *, commit=True):
        calls.append((product_id, delta))
        if (product_id, delta) == (c.id, -1):
            raise InsufficientStockError("drained")
        return real_adjust(product_id, delta, commit=commit)

    monkeypatch.setattr(stock_batch, "adjust_stock", _recording)

    with pytest.raises(PartialFailureError) as excinfo:
        apply_stock_lines(
            [StockLine(a.id, -1), StockLine(b.id, -1), StockLine(c.id, -1)],
            label="test",
        )

    assert excinfo.value.compensation_failures == []
    assert [line.product_id for line in excinfo.value.applied] == [a.id, b.id]
    # Reversals run newest first
    assert calls[-2:] == [(b.id, 1), (a.id, 1)]
    assert (on_hand(a.id), on_hand(b.id), on_hand(c.id)) == (10, 10, 10)


def test_compensation_failure_is_logged_and_reported(compensate_app, make_product, on_hand, monkeypatch, caplog):
    a = make_product("B-A", quantity=10)
    b = make_product("B-B", quantity=10)

    monkeypatch.setattr(
        stock_batch, "adjust_stock",
        _failing_adjust(stock_batch.adjust_stock, {
            (b.id, -1): InsufficientStockError("drained"),
            (a.id, 1): NotFoundError("gone"),
        }),
    )
    caplog.set_level(logging.INFO, logger="stockroom")

    with pytest.raises(PartialFailureError) as excinfo:
        apply_stock_lines([StockLine(a.id, -1), StockLine(b.id, -1)], label="test batch")

    err = excinfo.value
    # The original failure is what surfaces
    assert isinstance(err.cause, InsufficientStockError)
    assert err.failed_product_id == b.id
    assert len(err.compensation_failures) == 1
    assert err.compensation_failures[0]["product_id"] == a.id
    assert err.to_dict()["rolled_back"] is False
    assert any("Compensation failed for test batch" in r.getMessage() for r in caplog.records)
    # The uncompensated decrement stays applied
    assert on_hand(a.id) == 9


def test_best_effort_skips_failures(app, make_product, on_hand):
    a = make_product("B-A", quantity=1)

    failures = stock_batch.apply_stock_lines_best_effort(
        [StockLine(a.id, 2), StockLine(9999, 1)], label="restore",
    )
    db.session.commit()

    assert len(failures) == 1
    assert failures[0]["product_id"] == 9999
    assert on_hand(a.id) == 3


def test_unknown_batch_mode_is_rejected(app):
    app.config["STOCK_BATCH_MODE"] = "eventually"
    with pytest.raises(ValueError):
        stock_batch.current_batch_mode()
