from __future__ import annotations

import argparse
import time

from storefront import create_app
from storefront.config import Config
from storefront.contexts.erp.interfaces.scheduler import ReconciliationScheduler


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ERP reconciliation worker (inventory refresh and failed-order resubmission).")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    parser.add_argument("--interval", type=int, default=0, help="Seconds between cycles (never below the bulk rate window).")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    worker_config = type("WorkerConfig", (Config,), {"RECONCILIATION_ENABLED": False})
    app = create_app(worker_config)
    scheduler = ReconciliationScheduler(app)
    interval_seconds = max(scheduler.bulk_rate_limit_seconds, int(args.interval or scheduler.interval_seconds))

    while True:
        summary = scheduler.run_once()
        app.logger.info("reconciliation_worker_cycle_completed", extra=summary)
        if args.once:
            break
        time.sleep(interval_seconds)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
