"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default admin, etc.)
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from errors import TransactionConflict

logger = logging.getLogger(__name__)

DB_FILE = Path(os.environ.get("PORTAL_DB") or Path(__file__).with_name("portal.db"))

# Seconds a writer waits on a locked database before giving up
LOCK_TIMEOUT = 5.0


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_FILE, timeout=LOCK_TIMEOUT, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


@contextmanager
def get_conn():
    conn = _connect()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction():
    """
    One atomic read-modify-write unit.
    Takes the write lock up front (BEGIN IMMEDIATE) so two writers on the same
    member serialize; everything inside commits together or not at all.
    """
    conn = _connect()
    conn.isolation_level = None
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            if _is_lock_error(exc):
                raise TransactionConflict("The record is busy, please try again.") from exc
            raise
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            conn.execute("ROLLBACK")
            if _is_lock_error(exc):
                raise TransactionConflict("The record is busy, please try again.") from exc
            raise
        except BaseException:
            conn.execute("ROLLBACK")
            raise
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def now_iso() -> str:
    # Microseconds keep creation order stable for "most recent" lookups
    return datetime.utcnow().isoformat(timespec="microseconds")


def create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS admin_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )

    # Amounts are stored as TEXT and read back as Decimal
    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT UNIQUE,
            phone TEXT,
            password_hash TEXT,
            joined_date TEXT NOT NULL,
            total_paid TEXT NOT NULL DEFAULT '0',
            pending TEXT NOT NULL DEFAULT '0',
            status TEXT NOT NULL CHECK(status IN ('paid','pending','overdue','deceased')),
            deceased_on TEXT,
            deceased_notes TEXT,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS bills (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_id INTEGER NOT NULL,
            amount TEXT NOT NULL,
            due_date TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('pending','paid')),
            notes TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_id INTEGER NOT NULL,
            amount TEXT NOT NULL,
            date TEXT NOT NULL,
            notes TEXT,
            source TEXT NOT NULL CHECK(source IN ('manual','gateway')),
            gateway_payment_id TEXT UNIQUE,
            bill_id INTEGER,
            created_at TEXT NOT NULL,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS expenditures (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            date TEXT NOT NULL,
            description TEXT NOT NULL,
            amount TEXT NOT NULL,
            category TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )

    execute("CREATE INDEX IF NOT EXISTS idx_bills_member ON bills(member_id, status, due_date)")
    execute("CREATE INDEX IF NOT EXISTS idx_payments_member ON payments(member_id, created_at)")

    # Small key/value table: billing settings + force password change flag
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def init_db(default_admin_hash: str, admin_username: str = "admin") -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default admin if no admin exists
    - Force password change on first login
    """
    create_tables()

    admin = fetch_one("SELECT id FROM admin_users LIMIT 1")
    if not admin:
        execute(
            "INSERT INTO admin_users(username, password_hash, created_at) VALUES(?,?,?)",
            (admin_username, default_admin_hash, now_iso()),
        )
        set_setting("force_password_change", "1")
        logger.info("Created default admin user %r", admin_username)
    else:
        if get_setting("force_password_change") is None:
            set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    return get_setting("force_password_change") == "1"


def clear_force_password_change() -> None:
    set_setting("force_password_change", "0")
