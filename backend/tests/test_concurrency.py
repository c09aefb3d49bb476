"""
Thread-based concurrency tests against a file-backed SQLite database.

An in-memory database is shared by a single connection, so these tests get
their own app with a temporary database file and one session per thread.
"""
import os
import tempfile
import threading
import unittest

from storefront import create_app
from storefront.extensions import db
from storefront.services import catalog_service, identity_service, inventory_service, order_service
from storefront.validation import InsufficientStockError


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOCK_TIMEOUT_SECONDS": 10,
            "RETRY_ATTEMPTS": 5,
            "RETRY_BACKOFF_SECONDS": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            user = identity_service.create_user("concurrent@example.com", "dummy")
            self.user_id = user.id

            product = catalog_service.create_product("CONCUR-1", "Concurrent Product", 1000)
            self.product_id = product.id

            warehouse = inventory_service.create_warehouse("Concurrency Warehouse")
            self.warehouse_id = warehouse.id

            inventory_service.adjust_stock(self.product_id, self.warehouse_id, 50)

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, count):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                except Exception as exc:
                    outcome = exc
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_decrements_do_not_oversell(self):
        results = self._run_threads(
            lambda: inventory_service.adjust_stock(self.product_id, self.warehouse_id, -30).quantity,
            2,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(successes, [20])
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStockError)

        with self.app.app_context():
            self.assertEqual(inventory_service.get_stock(self.product_id, self.warehouse_id), 20)

    def test_concurrent_increments_are_not_lost(self):
        results = self._run_threads(
            lambda: inventory_service.adjust_stock(self.product_id, self.warehouse_id, 5).quantity,
            8,
        )

        self.assertFalse([r for r in results if isinstance(r, Exception)])
        with self.app.app_context():
            self.assertEqual(inventory_service.get_stock(self.product_id, self.warehouse_id), 90)

    def test_order_numbers_are_unique_under_contention(self):
        with self.app.app_context():
            # first allocation creates the sequence row
            order_service.create_order(self.user_id, [(self.product_id, 1)])

        results = self._run_threads(
            lambda: order_service.create_order(self.user_id, [(self.product_id, 1)]).order_number,
            6,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(len(results), len(set(results)))


if __name__ == "__main__":
    unittest.main()
