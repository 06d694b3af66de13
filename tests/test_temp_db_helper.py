import csv
import os
import tempfile
import unittest

from tests.helpers.temp_db import (
    DEFAULT_MAPPING_ROWS,
    TempDbSandbox,
    assert_safe_temp_db_path,
    open_sqlite_temp_connection,
)
from storefront.config import Config


class TempDbHelperTest(unittest.TestCase):
    def test_temp_db_create_and_cleanup(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        db_path = sandbox.db_path
        temp_dir = sandbox.temp_dir

        self.assertTrue(os.path.exists(temp_dir))
        self.assertTrue(db_path.startswith(tempfile.gettempdir()))

        conn = open_sqlite_temp_connection(db_path)
        try:
            conn.execute("CREATE TABLE IF NOT EXISTS sanity (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO sanity (value) VALUES ('ok')")
            row = conn.execute("SELECT COUNT(*) FROM sanity").fetchone()
            self.assertEqual(int(row[0]), 1)
        finally:
            conn.close()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(db_path))
        self.assertFalse(os.path.exists(temp_dir))

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.getcwd(), "storefront_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)

    def test_product_mapping_file_keeps_banner_above_header(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_mapping")
        try:
            path = sandbox.write_product_mapping()
            with open(path, encoding="utf-8", newline="") as handle:
                rows = list(csv.reader(handle))
        finally:
            sandbox.cleanup()

        self.assertEqual(rows[0], ["Product master export"])
        self.assertEqual(rows[1][:2], ["Item Code", "Item Name"])
        self.assertEqual(len(rows), len(DEFAULT_MAPPING_ROWS) + 2)

    def test_make_config_points_the_app_at_the_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config")
        try:
            temp_config = sandbox.make_config(Config, ERP_LOCKOUT_MAX_ERRORS=2)
        finally:
            sandbox.cleanup()

        self.assertTrue(issubclass(temp_config, Config))
        self.assertEqual(temp_config.DB_PATH, sandbox.db_path)
        self.assertEqual(temp_config.PRODUCT_MAPPING_PATH, sandbox.mapping_path)
        self.assertEqual(temp_config.ERP_MODE, "simulator")
        self.assertFalse(temp_config.RECONCILIATION_ENABLED)
        self.assertEqual(temp_config.ERP_LOCKOUT_MAX_ERRORS, 2)


if __name__ == "__main__":
    unittest.main()
