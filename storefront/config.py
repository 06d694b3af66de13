import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "storefront.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-storefront")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    ERP_MODE = os.environ.get("ERP_MODE", "simulator")
    ERP_COMPANY_CODE = os.environ.get("ERP_COMPANY_CODE", "")
    ERP_USER_ID = os.environ.get("ERP_USER_ID", "")
    ERP_API_CERT_KEY = os.environ.get("ERP_API_CERT_KEY", "")
    ERP_ZONE = os.environ.get("ERP_ZONE", "")
    ERP_ZONE_DISCOVERY = _bool_env("ERP_ZONE_DISCOVERY", True)
    ERP_ZONE_URL = os.environ.get("ERP_ZONE_URL", "https://oapi.ecount.com/OAPI/V2/Zone")
    ERP_BASE_URL_TEMPLATE = os.environ.get("ERP_BASE_URL_TEMPLATE", "https://oapi{zone}.ecount.com")
    ERP_WAREHOUSE_CODE = os.environ.get("ERP_WAREHOUSE_CODE", "")
    ERP_CUSTOMER_CODE = os.environ.get("ERP_CUSTOMER_CODE", "")
    ERP_CUSTOMER_NAME = os.environ.get("ERP_CUSTOMER_NAME", "Online Store Sales")
    ERP_TIMEOUT_SECONDS = _int_env("ERP_TIMEOUT_SECONDS", 20)
    ERP_VERIFY_SSL = _bool_env("ERP_VERIFY_SSL", True)
    ERP_SIMULATOR_SEED = _int_env("ERP_SIMULATOR_SEED", 42)

    ERP_CIRCUIT_FAILURE_THRESHOLD = _int_env("ERP_CIRCUIT_FAILURE_THRESHOLD", 3)
    ERP_CIRCUIT_TIMEOUT_SECONDS = _float_env("ERP_CIRCUIT_TIMEOUT_SECONDS", 30.0)
    ERP_BACKOFF_BASE_SECONDS = _float_env("ERP_BACKOFF_BASE_SECONDS", 1.0)
    ERP_BACKOFF_MAX_SECONDS = _float_env("ERP_BACKOFF_MAX_SECONDS", 60.0)
    ERP_BACKOFF_JITTER_RATIO = _float_env("ERP_BACKOFF_JITTER_RATIO", 0.3)
    ERP_LOCKOUT_MAX_ERRORS = _int_env("ERP_LOCKOUT_MAX_ERRORS", 8)
    ERP_LOCKOUT_WINDOW_SECONDS = _float_env("ERP_LOCKOUT_WINDOW_SECONDS", 3600.0)
    ERP_LOCKOUT_DURATION_SECONDS = _float_env("ERP_LOCKOUT_DURATION_SECONDS", 2700.0)
    ERP_SESSION_LIFETIME_SECONDS = _float_env("ERP_SESSION_LIFETIME_SECONDS", 1800.0)
    ERP_SESSION_SAFETY_MARGIN_SECONDS = _float_env("ERP_SESSION_SAFETY_MARGIN_SECONDS", 300.0)
    ERP_LOGIN_MIN_INTERVAL_SECONDS = _float_env("ERP_LOGIN_MIN_INTERVAL_SECONDS", 30.0)
    ERP_LOGIN_RATE_LIMIT_DELAY_SECONDS = _float_env("ERP_LOGIN_RATE_LIMIT_DELAY_SECONDS", 60.0)
    ERP_BULK_RATE_LIMIT_SECONDS = _int_env("ERP_BULK_RATE_LIMIT_SECONDS", 600)

    CATALOG_CACHE_TTL_SECONDS = _int_env("CATALOG_CACHE_TTL_SECONDS", 3600)
    PRODUCT_MAPPING_PATH = os.environ.get(
        "PRODUCT_MAPPING_PATH",
        os.path.join(BASE_DIR, "database", "product_mapping.csv"),
    )
    PRODUCT_MAPPING_DEFAULT_PRICE = os.environ.get("PRODUCT_MAPPING_DEFAULT_PRICE", "25000")
    LOW_STOCK_THRESHOLD = _int_env("LOW_STOCK_THRESHOLD", 10)

    RECONCILIATION_ENABLED = _bool_env("RECONCILIATION_ENABLED", True)
    RECONCILIATION_INTERVAL_SECONDS = _int_env("RECONCILIATION_INTERVAL_SECONDS", 600)
    RECONCILIATION_ORDER_DELAY_SECONDS = _float_env("RECONCILIATION_ORDER_DELAY_SECONDS", 2.0)
    RECONCILIATION_SYNC_ITEMS = _bool_env("RECONCILIATION_SYNC_ITEMS", False)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set for the production environment.")
        if env == "production" and self.SECRET_KEY == "dev-secret-storefront":
            raise RuntimeError("SECRET_KEY is insecure for production.")
        if env == "production" and self.ERP_MODE == "ecount" and not self.ERP_API_CERT_KEY:
            raise RuntimeError("ERP_API_CERT_KEY is required when ERP_MODE=ecount.")
