import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from storefront.config import Config
from storefront.db import close_db, init_db
from storefront.db_migrations import register_db_cli
from storefront.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config, **runtime_overrides):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_erp_runtime(app, runtime_overrides)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("db_auto_init_ignored", extra={"flask_env": flask_env})
        return

    with app.app_context():
        init_db()


def _register_erp_runtime(app: Flask, overrides: dict) -> None:
    from storefront.contexts.erp.interfaces.runtime import init_erp_runtime

    init_erp_runtime(app, **overrides)


def _register_blueprints(app: Flask) -> None:
    from storefront.routes.storefront_routes import storefront_bp

    app.register_blueprint(storefront_bp)


def _register_scheduler(app: Flask) -> None:
    from storefront.contexts.erp.interfaces.scheduler import start_reconciliation_scheduler

    start_reconciliation_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from storefront.contexts.erp.domain.gateway import ErpGatewayError
    from storefront.errors import AppError, SystemError, integration_error_for

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(ErpGatewayError)
    def _handle_erp_error(exc: ErpGatewayError):
        request_id = ensure_request_id()
        mapped = integration_error_for(exc)
        _log_error(mapped, request_id)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    from storefront.contexts.erp.interfaces.runtime import get_erp_runtime

    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        runtime = get_erp_runtime(app)
        erp_state = runtime.state.snapshot()
        circuit_state = erp_state["circuit"]["state"]
        locked = bool(erp_state["lockout"]["locked"])
        payload = {
            "status": "degraded" if locked or circuit_state != "closed" else "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "erp": {
                "mode": runtime.mode,
                "circuit_state": circuit_state,
                "lockout_active": locked,
                "session_active": bool(erp_state["session"].get("active")),
            },
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        return payload, 200

    @app.route("/metrics")
    def metrics():
        text = prometheus_metrics_text(gateway_state=get_erp_runtime(app).state.snapshot())
        return Response(text, mimetype="text/plain; version=0.0.4")
