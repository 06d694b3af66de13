import unittest
from decimal import Decimal

from storefront import create_app
from storefront.config import Config
from storefront.contexts.orders.domain import LocalOrderItem, parse_order_items
from storefront.contexts.orders.infrastructure.order_repository import OrderRepository
from storefront.db import close_db, get_db
from storefront.errors import ValidationError
from tests.helpers.temp_db import TempDbSandbox


class OrderRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="order_repo")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.repository = OrderRepository()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _create(self, **kwargs):
        items = [
            LocalOrderItem("HS-1001", 2, name="Hand Sanitizer", unit_price=Decimal("35000")),
            LocalOrderItem("GLV-M", 1, name="Glove", unit_price=Decimal("76000")),
        ]
        return self.repository.create_order(self.db, items, **kwargs)

    def test_create_order_persists_lines_and_total(self) -> None:
        order = self._create(customer_name="Clinic A", customer_email="a@example.com")

        self.assertIsNotNone(order.id)
        self.assertTrue(order.order_number.startswith("ORD-"))
        self.assertEqual(order.erp_sync_status, "pending")
        self.assertEqual(order.customer_name, "Clinic A")
        self.assertEqual([item.product_code for item in order.items], ["HS-1001", "GLV-M"])
        self.assertEqual(order.total_amount, Decimal("146000"))
        self.assertEqual(order.to_dict()["total_amount"], "146000")

    def test_explicit_order_number_is_kept(self) -> None:
        order = self._create(order_number="ORD-20261019-FIXED001")

        self.assertEqual(self.repository.get_order(self.db, order.id).order_number, "ORD-20261019-FIXED001")

    def test_missing_order_is_none(self) -> None:
        self.assertIsNone(self.repository.get_order(self.db, 9999))

    def test_sync_status_updates_and_attempt_counter(self) -> None:
        order = self._create()

        self.repository.update_order_sync_status(self.db, order.id, "failed", error="ERP down")
        failed = self.repository.get_order(self.db, order.id)
        self.assertEqual(failed.erp_sync_status, "failed")
        self.assertEqual(failed.erp_sync_error, "ERP down")
        self.assertEqual(failed.erp_sync_attempts, 1)

        self.repository.update_order_sync_status(self.db, order.id, "synced", doc_no="SO-1", io_date="20261019")
        synced = self.repository.get_order(self.db, order.id)
        self.assertEqual(synced.erp_sync_status, "synced")
        self.assertEqual(synced.erp_doc_number, "SO-1")
        self.assertEqual(synced.erp_io_date, "20261019")
        self.assertIsNone(synced.erp_sync_error)
        self.assertEqual(synced.erp_sync_attempts, 2)

    def test_unknown_status_is_rejected(self) -> None:
        order = self._create()

        with self.assertRaises(ValueError):
            self.repository.update_order_sync_status(self.db, order.id, "lost")

    def test_failed_orders_are_listed_oldest_first_with_limit(self) -> None:
        first = self._create()
        self._create()
        third = self._create()
        self.repository.update_order_sync_status(self.db, third.id, "failed", error="x")
        self.repository.update_order_sync_status(self.db, first.id, "failed", error="y")

        failed = self.repository.get_failed_orders(self.db)
        self.assertEqual([order.id for order in failed], [first.id, third.id])
        self.assertEqual(len(failed[0].items), 2)

        self.assertEqual(len(self.repository.get_failed_orders(self.db, limit=1)), 1)
        self.assertEqual(len(self.repository.list_orders(self.db)), 3)

    def test_long_error_text_is_truncated(self) -> None:
        order = self._create()

        self.repository.update_order_sync_status(self.db, order.id, "failed", error="e" * 5000)

        self.assertEqual(len(self.repository.get_order(self.db, order.id).erp_sync_error), 1000)


class ParseOrderItemsTest(unittest.TestCase):
    def test_payload_items_are_parsed(self) -> None:
        items = parse_order_items(
            [
                {"product_code": " HS-1001 ", "quantity": "3", "price": "100.5"},
                {"productId": "GLV-M", "quantity": 1, "name": "Glove"},
            ]
        )

        self.assertEqual(items[0].product_code, "HS-1001")
        self.assertEqual(items[0].quantity, 3)
        self.assertEqual(items[0].unit_price, Decimal("100.5"))
        self.assertEqual(items[1].product_code, "GLV-M")
        self.assertEqual(items[1].unit_price, Decimal("0"))

    def test_invalid_payloads_are_rejected(self) -> None:
        for raw in (None, [], ["x"], [{"quantity": 1}], [{"product_code": "A", "quantity": 0}], [{"product_code": "A", "quantity": "many"}], [{"product_code": "A", "quantity": 1, "price": "-1"}]):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError) as ctx:
                    parse_order_items(raw)
                self.assertEqual(ctx.exception.code, "order_invalid")


if __name__ == "__main__":
    unittest.main()
