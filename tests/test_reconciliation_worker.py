import os
import unittest
from unittest.mock import patch

from storefront.config import Config
from storefront.workers import reconciliation_worker
from tests.helpers.temp_db import TempDbSandbox


class ReconciliationWorkerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="reconcile_worker")
        self._temp_db.write_product_mapping()
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def test_parser_defaults(self) -> None:
        args = reconciliation_worker._build_parser().parse_args([])

        self.assertFalse(args.once)
        self.assertEqual(args.interval, 0)

    def test_single_cycle_runs_and_exits(self) -> None:
        worker_base = self._temp_db.make_config(Config, DB_AUTO_INIT=True, RECONCILIATION_ENABLED=True)

        with patch.object(reconciliation_worker, "Config", worker_base), patch.object(
            reconciliation_worker.time, "sleep"
        ) as sleep:
            exit_code = reconciliation_worker.main(["--once"])

        self.assertEqual(exit_code, 0)
        sleep.assert_not_called()


if __name__ == "__main__":
    unittest.main()
