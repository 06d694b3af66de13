from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable

from flask import Flask

from storefront.contexts.erp.domain.gateway import ErpCircuitOpenError, ErpGatewayError, ErpLockoutError
from storefront.contexts.erp.interfaces.runtime import ErpRuntime, get_erp_runtime
from storefront.db import close_db, get_db
from storefront.observability import (
    background_request_id,
    bind_request_id,
    observe_reconciliation_cycle,
    observe_reconciliation_order,
)


_LOGGER = logging.getLogger("storefront")


class ReconciliationScheduler:
    def __init__(
        self,
        app: Flask,
        runtime: ErpRuntime | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.app = app
        self.runtime = runtime or get_erp_runtime(app)
        self.bulk_rate_limit_seconds = _int_config(app, "ERP_BULK_RATE_LIMIT_SECONDS", 600, 1, 86_400)
        self.interval_seconds = max(
            self.bulk_rate_limit_seconds,
            _int_config(app, "RECONCILIATION_INTERVAL_SECONDS", 600, 1, 86_400),
        )
        self.order_delay_seconds = _float_config(app, "RECONCILIATION_ORDER_DELAY_SECONDS", 2.0, 0.0, 60.0)
        self.sync_items = bool(app.config.get("RECONCILIATION_SYNC_ITEMS", False))
        self.limit = _int_config(app, "RECONCILIATION_LIMIT", 100, 1, 1000)

        self._clock = clock
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycle_lock = threading.Lock()
        self._last_cycle_at: float | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="erp-reconciliation", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001 - keep the loop alive, next cycle retries
                _LOGGER.exception("reconciliation_cycle_crashed")
                observe_reconciliation_cycle("crashed")
            self._stop_event.wait(self.interval_seconds)

    def retry_after_seconds(self) -> float:
        if self._last_cycle_at is None:
            return 0.0
        elapsed = self._clock() - self._last_cycle_at
        return max(0.0, self.bulk_rate_limit_seconds - elapsed)

    def run_once(self) -> dict:
        if not self._cycle_lock.acquire(blocking=False):
            return {"status": "skipped", "reason": "cycle_running"}
        try:
            remaining = self.retry_after_seconds()
            if remaining > 0:
                _LOGGER.info("reconciliation_rate_window_active", extra={"retry_after_seconds": round(remaining, 2)})
                observe_reconciliation_cycle("skipped")
                return {"status": "skipped", "reason": "rate_window", "retry_after_seconds": round(remaining, 2)}
            self._last_cycle_at = self._clock()
            with self.app.app_context(), bind_request_id(background_request_id("reconcile")):
                try:
                    summary = self._run_cycle(get_db())
                finally:
                    close_db()
            observe_reconciliation_cycle(summary["status"])
            _LOGGER.info("reconciliation_cycle_finished", extra=summary)
            return summary
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, db) -> dict:
        summary = {
            "status": "completed",
            "inventory_items": None,
            "item_list_size": None,
            "resubmitted": 0,
            "synced": 0,
            "failed": 0,
        }
        try:
            summary["inventory_items"] = self.runtime.catalog.refresh_inventory()
            if self.sync_items:
                summary["item_list_size"] = self.runtime.catalog.sync_item_list()
        except (ErpLockoutError, ErpCircuitOpenError) as exc:
            _LOGGER.warning("reconciliation_gateway_paused", extra={"error": str(exc)})
            summary["status"] = "aborted"
            summary["reason"] = exc.code
            return summary
        except ErpGatewayError as exc:
            _LOGGER.warning(
                "reconciliation_inventory_refresh_failed",
                extra={"category": exc.category, "error": str(exc)},
            )

        orders = self.runtime.orders.failed_orders(db, limit=self.limit)
        for index, order in enumerate(orders):
            if self._stop_event.is_set():
                summary["status"] = "stopped"
                break
            if index and self.order_delay_seconds > 0:
                self._sleep(self.order_delay_seconds)
            summary["resubmitted"] += 1
            outcome = self.runtime.orders.sync(db, order)
            if outcome.synced:
                summary["synced"] += 1
                observe_reconciliation_order("synced")
                continue
            summary["failed"] += 1
            observe_reconciliation_order("failed")
            if outcome.stops_batch:
                summary["status"] = "aborted"
                summary["reason"] = outcome.error.code
                break
        return summary


def start_reconciliation_scheduler(app: Flask) -> ReconciliationScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = ReconciliationScheduler(app)
    scheduler.start()
    app.extensions["reconciliation_scheduler"] = scheduler
    _LOGGER.info(
        "reconciliation_scheduler_started",
        extra={"interval_seconds": scheduler.interval_seconds, "sync_items": scheduler.sync_items},
    )
    return scheduler


def get_reconciliation_scheduler(app: Flask) -> ReconciliationScheduler:
    scheduler = app.extensions.get("reconciliation_scheduler")
    if scheduler is None:
        scheduler = ReconciliationScheduler(app)
        app.extensions["reconciliation_scheduler"] = scheduler
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("RECONCILIATION_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def _float_config(app: Flask, key: str, default: float, min_value: float, max_value: float) -> float:
    try:
        value = float(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
