# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests for the stock floor and exactly-once transitions.

Each worker runs in its own app context (and so its own session) against a
temporary SQLite file, the way concurrent requests would.
"""
import os
import tempfile
import threading
import unittest

from stockroom import create_app
from stockroom.config import BATCH_MODE_TRANSACTION, BATCH_MODE_COMPENSATE
from stockroom.errors import InsufficientStockError, InvalidStateError, NotFoundError
from stockroom.extensions import db
from stockroom.models import Product, Supplier, Invoice
from stockroom.services import sales_service, purchasing_service
from stockroom.services.stock_service import adjust_stock


class ConcurrencyTestsBase(unittest.TestCase):
    batch_mode = BATCH_MODE_TRANSACTION

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "STOCK_BATCH_MODE": self.batch_mode,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            supplier = Supplier(name="Concurrency Supplier")
            db.session.add(supplier)
            product = Product(sku="CONCUR-1", name="Concurrent Product", price=5, quantity=1)
            db.session.add(product)
            db.session.commit()
            self.supplier_id = supplier.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_concurrently(self, target, count=2):
        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(count)

        def worker():
            with self.app.app_context():
                try:
                    barrier.wait()
                    value = target()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def _on_hand(self):
        with self.app.app_context():
            return db.session.query(Product.quantity).filter_by(id=self.product_id).scalar()

    def test_two_decrements_against_one_unit(self):
        results, errors = self._run_concurrently(lambda: adjust_stock(self.product_id, -1).quantity)

        self.assertEqual(results, [0])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InsufficientStockError)
        self.assertEqual(self._on_hand(), 0)

    def test_two_invoices_against_one_unit(self):
        def create():
            return sales_service.create_invoice(
                "Racer", [{"product_id": self.product_id, "quantity": 1}],
            ).invoice_number

        results, errors = self._run_concurrently(create)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InsufficientStockError)
        self.assertEqual(self._on_hand(), 0)
        with self.app.app_context():
            self.assertEqual(db.session.query(Invoice).count(), 1)

    def test_concurrent_receipts_apply_once(self):
        with self.app.app_context():
            order = purchasing_service.create_purchase_order(
                self.supplier_id, [{"product_id": self.product_id, "quantity": 10}],
            )
            order_id = order.id

        results, errors = self._run_concurrently(
            lambda: purchasing_service.receive_purchase_order(order_id).status,
        )

        self.assertEqual(results, ["received"])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InvalidStateError)
        self.assertEqual(self._on_hand(), 11)

    def test_concurrent_invoice_deletes_restore_once(self):
        with self.app.app_context():
            adjust_stock(self.product_id, 4)
            invoice = sales_service.create_invoice(
                "Racer", [{"product_id": self.product_id, "quantity": 3}],
            )
            invoice_id = invoice.id
        self.assertEqual(self._on_hand(), 2)

        results, errors = self._run_concurrently(
            lambda: sales_service.delete_invoice(invoice_id)["invoice_id"],
        )

        self.assertEqual(results, [invoice_id])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], NotFoundError)
        self.assertEqual(self._on_hand(), 5)


class CompensateModeConcurrencyTests(ConcurrencyTestsBase):
    batch_mode = BATCH_MODE_COMPENSATE


class TransactionModeConcurrencyTests(ConcurrencyTestsBase):
    batch_mode = BATCH_MODE_TRANSACTION


del ConcurrencyTestsBase
