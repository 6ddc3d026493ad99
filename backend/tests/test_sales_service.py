"""
Invoice flow tests: stock decrement on create, restore on delete, tax and numbering.
"""

import logging
import re
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from stockroom.errors import InsufficientStockError, NotFoundError, PartialFailureError
from stockroom.extensions import db
from stockroom.models import Invoice, Product
from stockroom.services import sales_service, stock_batch
from stockroom.services.sales_service import compute_tax
from stockroom.time_utils import utcnow
from stockroom.validation import ValidationError


def _items(*pairs):
    return [{"product_id": pid, "quantity": qty} for pid, qty in pairs]


def test_create_invoice_decrements_stock(app, make_product, on_hand):
    a = make_product("S-A", quantity=10, price="2.50")
    b = make_product("S-B", quantity=5, price="4.00")

    invoice = sales_service.create_invoice("Jane", _items((a.id, 3), (b.id, 2)), tax=10)

    assert on_hand(a.id) == 7
    assert on_hand(b.id) == 3
    assert invoice.subtotal == Decimal("15.50")
    assert invoice.tax_amount == Decimal("1.55")
    assert invoice.total == Decimal("17.05")
    assert invoice.paid is False
    assert [item.unit_price for item in invoice.items] == [Decimal("2.50"), Decimal("4.00")]


def test_invoice_number_format_and_sequence(app, make_product):
    a = make_product("S-A", quantity=10)

    first = sales_service.create_invoice("A", _items((a.id, 1)))
    second = sales_service.create_invoice("B", _items((a.id, 1)))

    year = utcnow().year
    assert re.fullmatch(rf"INV-{year}-\d{{5}}", first.invoice_number)
    assert first.invoice_number == f"INV-{year}-00001"
    assert second.invoice_number == f"INV-{year}-00002"


def test_invoice_numbers_are_not_reused_after_delete(app, make_product):
    a = make_product("S-A", quantity=10)

    first = sales_service.create_invoice("A", _items((a.id, 1)))
    sales_service.delete_invoice(first.id)
    second = sales_service.create_invoice("B", _items((a.id, 1)))

    assert second.invoice_number != first.invoice_number
    assert second.invoice_number.endswith("00002")


def test_insufficient_stock_writes_nothing(app, make_product, on_hand):
    a = make_product("S-A", quantity=10)
    b = make_product("S-B", quantity=1)

    with pytest.raises(InsufficientStockError) as excinfo:
        sales_service.create_invoice("Jane", _items((a.id, 2), (b.id, 5)))

    assert "Product S-B" in str(excinfo.value)
    assert on_hand(a.id) == 10
    assert on_hand(b.id) == 1
    assert db.session.query(Invoice).count() == 0


def test_create_invoice_validation(app, make_product):
    a = make_product("S-A", quantity=10)

    with pytest.raises(ValidationError):
        sales_service.create_invoice("", _items((a.id, 1)))
    with pytest.raises(ValidationError):
        sales_service.create_invoice("Jane", [])
    with pytest.raises(ValidationError):
        sales_service.create_invoice("Jane", _items((a.id, 0)))
    with pytest.raises(ValidationError):
        sales_service.create_invoice("Jane", [{"product_id": a.id, "quantity": 1, "unit_price": "-1"}])
    with pytest.raises(ValidationError):
        sales_service.create_invoice("Jane", _items((a.id, 1)), payment_method="barter")
    with pytest.raises(NotFoundError):
        sales_service.create_invoice("Jane", _items((31337, 1)))


def test_explicit_unit_price_is_snapshotted(app, make_product):
    a = make_product("S-A", quantity=10, price="9.99")

    invoice = sales_service.create_invoice(
        "Jane", [{"product_id": a.id, "quantity": 2, "unit_price": "5.00"}],
    )
    a_row = db.session.get(Product, a.id)
    a_row.price = Decimal("20.00")
    db.session.commit()

    invoice = sales_service.get_invoice(invoice.id)
    assert invoice.items[0].unit_price == Decimal("5.00")
    assert invoice.subtotal == Decimal("10.00")


def test_delete_invoice_restores_stock(app, make_product, on_hand):
    a = make_product("S-A", quantity=10)
    b = make_product("S-B", quantity=10)

    invoice = sales_service.create_invoice("Jane", _items((a.id, 4), (b.id, 1)))
    ack = sales_service.delete_invoice(invoice.id)

    assert on_hand(a.id) == 10
    assert on_hand(b.id) == 10
    assert ack["restore_failures"] == []
    assert ack["invoice_number"] == invoice.invoice_number
    with pytest.raises(NotFoundError):
        sales_service.get_invoice(invoice.id)


def test_delete_invoice_twice(app, make_product, on_hand):
    a = make_product("S-A", quantity=10)
    invoice = sales_service.create_invoice("Jane", _items((a.id, 4)))

    sales_service.delete_invoice(invoice.id)
    with pytest.raises(NotFoundError):
        sales_service.delete_invoice(invoice.id)
    assert on_hand(a.id) == 10


def test_delete_invoice_succeeds_when_restore_fails(app, make_product, on_hand):
    a = make_product("S-A", quantity=10)
    b = make_product("S-B", quantity=10)
    invoice = sales_service.create_invoice("Jane", _items((a.id, 2), (b.id, 3)))
    b_id = b.id

    # Remove the product row behind the service's back; b is expired from here on
    db.session.execute(Product.__table__.delete().where(Product.id == b_id))
    db.session.commit()

    ack = sales_service.delete_invoice(invoice.id)

    assert on_hand(a.id) == 10
    assert len(ack["restore_failures"]) == 1
    assert ack["restore_failures"][0]["product_id"] == b_id
    assert db.session.query(Invoice).count() == 0


def test_mark_paid_is_idempotent_and_has_no_stock_effect(app, make_product, on_hand):
    a = make_product("S-A", quantity=10)
    invoice = sales_service.create_invoice("Jane", _items((a.id, 1)))

    paid = sales_service.mark_invoice_paid(invoice.id, "card")
    assert paid.paid is True
    assert paid.payment_method == "card"

    again = sales_service.mark_invoice_paid(invoice.id)
    assert again.paid is True
    assert again.payment_method == "card"
    assert on_hand(a.id) == 9

    with pytest.raises(NotFoundError):
        sales_service.mark_invoice_paid(555)


@pytest.mark.parametrize("tax, expected_amount", [
    (0, "0"),
    (-5, "0"),
    (10, "10.00"),
    (100, "100.00"),
    (150, "150"),
    ("7.5", "7.50"),
])
def test_compute_tax(tax, expected_amount):
    subtotal = Decimal("100.00")
    tax_amount, total = compute_tax(subtotal, tax)
    assert tax_amount == Decimal(expected_amount)
    assert total == subtotal + Decimal(expected_amount)


def test_exact_on_hand_boundary(app, make_product, on_hand):
    a = make_product("S-EX", quantity=4)

    with pytest.raises(InsufficientStockError):
        sales_service.create_invoice("Jane", _items((a.id, 5)))
    assert on_hand(a.id) == 4

    sales_service.create_invoice("Jane", _items((a.id, 3), (a.id, 1)))
    assert on_hand(a.id) == 0


@pytest.mark.parametrize("tax, tax_amount, total", [
    (10, "100", "1100"),
    (150, "150", "1150"),
    (0, "0", "1000"),
])
def test_tax_paths_on_invoice(app, make_product, tax, tax_amount, total):
    a = make_product("S-TAX", quantity=10, price="1000.00")

    invoice = sales_service.create_invoice("Jane", _items((a.id, 1)), tax=tax)

    assert invoice.subtotal == Decimal("1000")
    assert invoice.tax_amount == Decimal(tax_amount)
    assert invoice.total == Decimal(total)


def test_sub_cent_unit_price_is_rounded_before_totals(app, make_product):
    a = make_product("S-CENT", quantity=10)

    invoice = sales_service.create_invoice(
        "Jane", [{"product_id": a.id, "quantity": 3, "unit_price": "0.335"}], tax=10,
    )
    invoice_id = invoice.id
    db.session.expire_all()

    stored = sales_service.get_invoice(invoice_id)
    assert stored.items[0].unit_price == Decimal("0.34")
    assert stored.subtotal == Decimal("1.02")
    assert stored.subtotal == sum(i.unit_price * i.quantity for i in stored.items)
    assert stored.total == stored.subtotal + stored.tax_amount


def test_price_and_tax_caps(app, make_product, on_hand):
    a = make_product("S-CAP", quantity=10)

    with pytest.raises(ValidationError):
        sales_service.create_invoice(
            "Jane", [{"product_id": a.id, "quantity": 1, "unit_price": "10000000000"}],
        )
    with pytest.raises(ValidationError):
        sales_service.create_invoice("Jane", _items((a.id, 1)), tax="1e40")
    assert on_hand(a.id) == 10


def _break_invoice_numbering(monkeypatch):
    def _unavailable():
        raise SQLAlchemyError("document sequence unavailable")
    monkeypatch.setattr(sales_service, "next_invoice_number", _unavailable)


def test_failed_save_in_transaction_mode_moves_no_stock(transaction_app, make_product, on_hand, monkeypatch):
    a = make_product("S-TX", quantity=10)
    _break_invoice_numbering(monkeypatch)

    with pytest.raises(SQLAlchemyError):
        sales_service.create_invoice("Jane", _items((a.id, 2)))

    assert on_hand(a.id) == 10
    assert db.session.query(Invoice).count() == 0


def test_failed_save_in_compensate_mode_reverses_stock(compensate_app, make_product, on_hand, monkeypatch):
    a = make_product("S-CMP", quantity=10)
    _break_invoice_numbering(monkeypatch)

    with pytest.raises(PartialFailureError) as excinfo:
        sales_service.create_invoice("Jane", _items((a.id, 2)))

    err = excinfo.value
    assert isinstance(err.cause, SQLAlchemyError)
    assert err.failed["step"] == "save_invoice"
    assert err.compensation_failures == []
    assert on_hand(a.id) == 10
    assert db.session.query(Invoice).count() == 0


def test_failed_save_reports_decrements_it_could_not_reverse(
    compensate_app, make_product, on_hand, monkeypatch, caplog,
):
    a = make_product("S-LOST", quantity=10)
    a_id = a.id
    _break_invoice_numbering(monkeypatch)

    real_adjust = stock_batch.adjust_stock

    def _adjust(product_id, delta, *, commit=True):
        if (product_id, delta) == (a_id, 2):
            raise NotFoundError("gone")
        return real_adjust(product_id, delta, commit=commit)

    monkeypatch.setattr(stock_batch, "adjust_stock", _adjust)
    caplog.set_level(logging.INFO, logger="stockroom")

    with pytest.raises(PartialFailureError) as excinfo:
        sales_service.create_invoice("Jane", _items((a_id, 2)))

    err = excinfo.value
    assert len(err.compensation_failures) == 1
    assert err.compensation_failures[0]["product_id"] == a_id
    assert err.details["compensation_failures"] == err.compensation_failures
    assert any("Compensation failed" in r.getMessage() for r in caplog.records)
    # The decrement stays applied, and the caller is told so
    assert on_hand(a_id) == 8
    assert db.session.query(Invoice).count() == 0
