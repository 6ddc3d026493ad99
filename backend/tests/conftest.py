"""
Pytest fixtures for stock engine tests.

Provides an in-memory app per test (run in both batch modes), a test client,
and small factories for suppliers and products. The factories use whichever
app context the test's app fixture pushed.
"""

import pytest
from decimal import Decimal

from stockroom import create_app
from stockroom.config import BATCH_MODE_TRANSACTION, BATCH_MODE_COMPENSATE
from stockroom.extensions import db
from stockroom.models import Product, Supplier


def _build_app(mode: str):
    return create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_BATCH_MODE': mode,
    })


def _app_context(mode: str):
    app = _build_app(mode)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(params=[BATCH_MODE_TRANSACTION, BATCH_MODE_COMPENSATE])
def app(request):
    """Create application for testing, once per batch mode."""
    yield from _app_context(request.param)


@pytest.fixture
def transaction_app():
    yield from _app_context(BATCH_MODE_TRANSACTION)


@pytest.fixture
def compensate_app():
    yield from _app_context(BATCH_MODE_COMPENSATE)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def make_supplier():
    def _make(name="Acme Wholesale"):
        supplier = Supplier(name=name, contact_email="orders@acme.test")
        db.session.add(supplier)
        db.session.commit()
        return supplier
    return _make


@pytest.fixture
def make_product():
    """make_product(sku, quantity=..., price=...) -> committed Product."""
    def _make(sku, *, quantity=0, price="10.00", reorder_level=10, name=None):
        product = Product(
            sku=sku,
            name=name or f"Product {sku}",
            price=Decimal(price),
            cost_price=Decimal("0"),
            quantity=quantity,
            reorder_level=reorder_level,
        )
        db.session.add(product)
        db.session.commit()
        return product
    return _make


@pytest.fixture
def on_hand():
    """Stored quantity for a product id, read straight from the row."""
    def _read(product_id: int) -> int:
        return db.session.query(Product.quantity).filter(Product.id == product_id).scalar()
    return _read
