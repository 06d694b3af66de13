import unittest

from storefront import create_app
from storefront.config import Config
from storefront.db import close_db
from storefront.observability import reset_metrics_for_tests
from storefront.ui_strings import error_message, success_message, warning_message
from tests.helpers.fakes import ManualClock, ScriptedTransport, data_ok, login_ok, network_down
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_app(temp_db: TempDbSandbox, clock: ManualClock, **overrides):
    attrs = {"TESTING": True, "PROPAGATE_EXCEPTIONS": False, "ERP_BACKOFF_JITTER_RATIO": 0.0}
    runtime_kwargs = {"clock": clock, "sleep": clock.sleep}
    if "transport" in overrides:
        runtime_kwargs["transport"] = overrides.pop("transport")
    attrs.update(overrides)
    return create_app(temp_db.make_config(Config, **attrs), **runtime_kwargs)


class _RoutesTestCase(unittest.TestCase):
    prefix = "storefront_routes"

    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix=self.prefix)
        self._temp_db.write_product_mapping()
        self.clock = ManualClock()
        self.app = self._build_app()
        self.client = self.app.test_client()

    def _build_app(self):
        return _build_temp_app(self._temp_db, self.clock)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()


class CatalogRoutesTest(_RoutesTestCase):
    def test_catalog_lists_simulated_inventory_with_mapped_names(self) -> None:
        response = self.client.get("/api/products")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()

        self.assertEqual(payload["total"], 8)
        self.assertTrue(payload["has_real_time_data"])
        self.assertTrue(payload["last_updated"])
        by_code = {item["product_code"]: item for item in payload["products"]}
        self.assertEqual(by_code["GLV-M"]["name"], "Nitrile Examination Glove M")
        self.assertEqual(by_code["GLV-M"]["price"], "76000")
        self.assertEqual(by_code["GLV-M"]["category"], "PPE & Safety")
        self.assertIn("is_low_stock", by_code["GLV-M"])

    def test_single_product_lookup_and_live_refresh(self) -> None:
        cached = self.client.get("/api/products/hs-1001")
        self.assertEqual(cached.status_code, 200)
        self.assertEqual(cached.get_json()["product_code"], "HS-1001")

        live = self.client.get("/api/products/HS-1001?live=1")
        self.assertEqual(live.status_code, 200)
        self.assertTrue(live.get_json()["has_real_time_data"])

    def test_unknown_product_is_404(self) -> None:
        response = self.client.get("/api/products/NOPE-1")

        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload["error"], "product_not_found")
        self.assertEqual(payload["message"], error_message("product_not_found"))
        self.assertTrue(payload["request_id"])

    def test_cache_clear_and_status(self) -> None:
        self.client.get("/api/products")
        status = self.client.get("/api/admin/erp/status").get_json()
        self.assertEqual(status["mode"], "simulator")
        self.assertTrue(status["catalog_cache"]["cached"])
        self.assertEqual(status["circuit"]["state"], "closed")
        self.assertTrue(status["product_mapping"]["loaded"])
        self.assertNotIn("token", status["session"])

        cleared = self.client.post("/api/admin/erp/cache/clear")
        self.assertEqual(cleared.status_code, 200)
        self.assertTrue(cleared.get_json()["cleared"])
        self.assertFalse(cleared.get_json()["catalog_cache"]["cached"])

    def test_mapping_refresh_reports_diagnostics(self) -> None:
        response = self.client.post("/api/admin/erp/mapping/refresh")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertTrue(payload["loaded"])
        self.assertEqual(payload["product_mapping"]["total_mapped"], 6)

    def test_request_id_header_is_echoed(self) -> None:
        response = self.client.get("/health", headers={"X-Request-Id": "req-42"})

        self.assertEqual(response.headers.get("X-Request-Id"), "req-42")


class MissingMappingRoutesTest(_RoutesTestCase):
    prefix = "storefront_routes_nomap"

    def _build_app(self):
        return _build_temp_app(self._temp_db, self.clock, PRODUCT_MAPPING_PATH=self._temp_db.temp_dir + "/absent.csv")

    def test_mapping_refresh_failure_is_503(self) -> None:
        response = self.client.post("/api/admin/erp/mapping/refresh")

        self.assertEqual(response.status_code, 503)
        self.assertFalse(response.get_json()["loaded"])
        self.assertIn("not found", response.get_json()["product_mapping"]["last_error"])

    def test_order_is_kept_locally_when_mapping_is_unavailable(self) -> None:
        response = self.client.post("/api/orders", json={"items": [{"product_code": "HS-1001", "quantity": 1}]})

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertFalse(payload["synced"])
        self.assertEqual(payload["error"], "product_mapping_unavailable")
        self.assertEqual(payload["order"]["erp_sync_status"], "failed")


class OrderRoutesTest(_RoutesTestCase):
    prefix = "storefront_routes_orders"

    def test_order_is_created_and_synced(self) -> None:
        response = self.client.post(
            "/api/orders",
            json={
                "items": [{"product_code": "HS-1001", "quantity": 2}, {"product_code": "GLV-M", "quantity": 1}],
                "customer": {"name": "Clinic A", "email": "clinic@example.com"},
            },
        )

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertTrue(payload["synced"])
        self.assertIn(payload["message"], (success_message("erp_synced"), success_message("erp_pending_document")))
        order = payload["order"]
        self.assertEqual(order["erp_sync_status"], "synced")
        self.assertEqual(order["customer_name"], "Clinic A")
        self.assertEqual(order["total_amount"], "146000")
        self.assertEqual(order["items"][0]["name"], "Hand Sanitizer Gel 500ml")
        self.assertEqual(payload["erp"]["remote_doc_id"], order["erp_doc_number"])

        fetched = self.client.get(f"/api/orders/{order['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.get_json()["order_number"], order["order_number"])

    def test_unmapped_product_keeps_order_as_failed(self) -> None:
        response = self.client.post(
            "/api/orders",
            json={"items": [{"product_code": "HS-1001", "quantity": 1}, {"product_code": "ZZZ-404", "quantity": 1}]},
        )

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertFalse(payload["synced"])
        self.assertEqual(payload["error"], "unmapped_products")
        self.assertEqual(payload["unmapped_codes"], ["ZZZ-404"])
        self.assertEqual(payload["message"], success_message("order_created"))
        self.assertEqual(payload["warning"], warning_message("erp_sync_failed"))
        self.assertEqual(payload["error_message"], error_message("unmapped_products"))

        failed = self.client.get("/api/orders/failed").get_json()
        self.assertEqual(failed["total"], 1)
        self.assertEqual(failed["orders"][0]["id"], payload["order"]["id"])

    def test_invalid_order_payload_is_400(self) -> None:
        response = self.client.post("/api/orders", json={"items": [{"product_code": "HS-1001", "quantity": 0}]})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "order_invalid")

    def test_missing_order_is_404(self) -> None:
        response = self.client.get("/api/orders/424242")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "order_not_found")

    def test_manual_reconcile_respects_rate_window(self) -> None:
        first = self.client.post("/api/admin/erp/reconcile")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.get_json()["status"], "completed")

        second = self.client.post("/api/admin/erp/reconcile")
        self.assertEqual(second.status_code, 429)
        payload = second.get_json()
        self.assertEqual(payload["error"], "erp_rate_limited")
        self.assertGreater(payload["retry_after_seconds"], 0)


class ErpOutageRoutesTest(_RoutesTestCase):
    prefix = "storefront_routes_outage"

    def _build_app(self):
        self.transport = (
            ScriptedTransport()
            .on("/OAPI/V2/OAPILogin", login_ok("TOKEN-OUTAGE"))
            .on("/GetListInventoryBalanceStatus", data_ok([{"PROD_CD": "HS-1001", "BAL_QTY": "3"}]), network_down())
        )
        return _build_temp_app(
            self._temp_db,
            self.clock,
            transport=self.transport,
            ERP_ZONE="CC",
            ERP_ZONE_DISCOVERY=False,
        )

    def test_stale_catalog_is_served_when_refresh_fails(self) -> None:
        fresh = self.client.get("/api/products").get_json()
        self.assertTrue(fresh["has_real_time_data"])
        self.assertTrue(fresh["products"][0]["is_low_stock"])

        self.clock.advance(3700)
        stale = self.client.get("/api/products")

        self.assertEqual(stale.status_code, 200)
        payload = stale.get_json()
        self.assertFalse(payload["has_real_time_data"])
        self.assertEqual(payload["last_updated"], fresh["last_updated"])
        self.assertEqual(payload["products"][0]["product_code"], "HS-1001")
        self.assertFalse(payload["products"][0]["has_real_time_data"])

    def test_erp_failure_without_cache_is_502(self) -> None:
        self.client.get("/api/products")
        self.client.post("/api/admin/erp/cache/clear")

        response = self.client.get("/api/products")

        self.assertEqual(response.status_code, 502)
        payload = response.get_json()
        self.assertEqual(payload["error"], "erp_temporarily_unavailable")
        self.assertEqual(payload["category"], "network")


if __name__ == "__main__":
    unittest.main()
