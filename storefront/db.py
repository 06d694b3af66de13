import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


SYNC_STATUSES = ("pending", "synced", "failed")


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return
    _init_db_sqlite(db)


_SYNC_STATUS_CHECK = "erp_sync_status IN ('pending', 'synced', 'failed')"


def _init_db_sqlite(db: Database):
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_number TEXT NOT NULL UNIQUE,
            customer_name TEXT,
            customer_email TEXT,
            total_amount TEXT NOT NULL DEFAULT '0',
            status TEXT NOT NULL DEFAULT 'received',
            erp_sync_status TEXT NOT NULL DEFAULT 'pending' CHECK ({_SYNC_STATUS_CHECK}),
            erp_doc_number TEXT,
            erp_io_date TEXT,
            erp_sync_error TEXT,
            erp_sync_attempts INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            product_code TEXT NOT NULL,
            name TEXT,
            quantity INTEGER NOT NULL,
            unit_price TEXT NOT NULL DEFAULT '0'
        )
        """
    )
    db.execute("CREATE INDEX IF NOT EXISTS idx_orders_erp_sync_status ON orders (erp_sync_status)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items (order_id)")
    db.commit()


def _init_db_postgres(db: Database) -> None:
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS orders (
            id SERIAL PRIMARY KEY,
            order_number TEXT NOT NULL UNIQUE,
            customer_name TEXT,
            customer_email TEXT,
            total_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'received',
            erp_sync_status TEXT NOT NULL DEFAULT 'pending' CHECK ({_SYNC_STATUS_CHECK}),
            erp_doc_number TEXT,
            erp_io_date TEXT,
            erp_sync_error TEXT,
            erp_sync_attempts INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS order_items (
            id SERIAL PRIMARY KEY,
            order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            product_code TEXT NOT NULL,
            name TEXT,
            quantity INTEGER NOT NULL,
            unit_price NUMERIC(14, 2) NOT NULL DEFAULT 0
        )
        """
    )
    db.execute("CREATE INDEX IF NOT EXISTS idx_orders_erp_sync_status ON orders (erp_sync_status)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items (order_id)")
    db.commit()
