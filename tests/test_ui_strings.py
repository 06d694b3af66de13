import unittest

from storefront.errors import erp_failure_response
from storefront.contexts.erp.domain.gateway import (
    ErpAuthError,
    ErpCircuitOpenError,
    ErpCriticalError,
    ErpLockoutError,
    ErpNetworkError,
    ErpRateLimitError,
    ErpValidationError,
)
from storefront.ui_strings import MESSAGES, error_message, get_message, success_message, warning_message


class UiStringsTest(unittest.TestCase):
    def test_required_categories_exist(self) -> None:
        self.assertTrue({"error", "success", "warning"}.issubset(set(MESSAGES.keys())))

    def test_messages_are_not_empty(self) -> None:
        for category, bucket in MESSAGES.items():
            self.assertTrue(bucket, f"empty category: {category}")
            for key, value in bucket.items():
                self.assertTrue((value or "").strip(), f"empty message for {category}:{key}")

    def test_every_erp_failure_has_a_message(self) -> None:
        failures = [
            ErpAuthError("x"),
            ErpCircuitOpenError("x"),
            ErpCriticalError("x"),
            ErpLockoutError("x"),
            ErpNetworkError("x"),
            ErpRateLimitError("x"),
            ErpValidationError("x"),
        ]
        for exc in failures:
            _code, message_key, _status = erp_failure_response(exc)
            self.assertIn(message_key, MESSAGES["error"], message_key)

    def test_unknown_key_falls_back(self) -> None:
        self.assertEqual(get_message("error", "nope"), "nope")
        self.assertEqual(error_message("nope", "fallback"), "fallback")
        self.assertEqual(get_message("missing_category", "x", "y"), "y")

    def test_helpers_read_their_category(self) -> None:
        self.assertEqual(success_message("erp_synced"), MESSAGES["success"]["erp_synced"])
        self.assertEqual(warning_message("erp_sync_failed"), MESSAGES["warning"]["erp_sync_failed"])


if __name__ == "__main__":
    unittest.main()
