"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default admin, etc.)

Every helper opens its own connection and commits on exit, so a sequence of
calls is a sequence of independent writes, not one transaction.
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from config import settings
from errors import PermissionDeniedError

DB_FILE = settings.db_file

_ts_lock = threading.Lock()
_last_ts: datetime | None = None


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _is_write_refusal(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "readonly" in msg or "read-only" in msg or "not authorized" in msg


def execute(sql: str, params: tuple = ()) -> int:
    """Run one statement; returns the affected row count."""
    try:
        with get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount
    except sqlite3.OperationalError as exc:
        if _is_write_refusal(exc):
            raise PermissionDeniedError(f"Store refused write: {exc}") from exc
        raise


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    try:
        with get_conn() as conn:
            conn.executemany(sql, seq_of_params)
    except sqlite3.OperationalError as exc:
        if _is_write_refusal(exc):
            raise PermissionDeniedError(f"Store refused write: {exc}") from exc
        raise


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def insert(table: str, fields: dict) -> None:
    cols = ", ".join(fields)
    marks = ", ".join("?" for _ in fields)
    execute(f"INSERT INTO {table}({cols}) VALUES({marks})", tuple(fields.values()))


def update(table: str, row_id: str, fields: dict) -> int:
    """Partial update of one document by id; stamps updated_at."""
    fields = {**fields, "updated_at": server_timestamp()}
    assignments = ", ".join(f"{col} = ?" for col in fields)
    return execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        (*fields.values(), row_id),
    )


def new_id() -> str:
    return uuid.uuid4().hex


def server_timestamp() -> str:
    """UTC ISO timestamp, strictly increasing within this process."""
    global _last_ts
    with _ts_lock:
        now = datetime.now(timezone.utc)
        if _last_ts is not None and now <= _last_ts:
            now = _last_ts + timedelta(microseconds=1)
        _last_ts = now
        return now.isoformat(timespec="microseconds")


def _create_tables() -> None:
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

    execute(
        """
        CREATE TABLE IF NOT EXISTS memberships (
            id TEXT PRIMARY KEY,
            associate_id TEXT NOT NULL,
            associate_snapshot TEXT,
            season TEXT NOT NULL,
            plan_id TEXT,
            plan_snapshot TEXT NOT NULL,
            status TEXT NOT NULL,
            total_amount REAL,
            currency TEXT NOT NULL,
            pay_code TEXT NOT NULL,
            pay_link_enabled INTEGER NOT NULL DEFAULT 1,
            pay_link_disabled_reason TEXT,
            installments_total INTEGER NOT NULL DEFAULT 0,
            installments_settled INTEGER NOT NULL DEFAULT 0,
            installments_pending INTEGER NOT NULL DEFAULT 0,
            next_unpaid_n INTEGER,
            next_unpaid_due_date TEXT,
            last_payment_submission_id TEXT,
            last_payment_at TEXT,
            validated_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    execute("CREATE INDEX IF NOT EXISTS ix_memberships_assoc_season ON memberships(associate_id, season)")

    execute(
        """
        CREATE TABLE IF NOT EXISTS membership_installments (
            id TEXT PRIMARY KEY,
            membership_id TEXT NOT NULL,
            season TEXT NOT NULL,
            n INTEGER NOT NULL,
            due_month_day TEXT,
            due_date TEXT,
            amount REAL NOT NULL CHECK(amount >= 0),
            status TEXT NOT NULL,
            payment_submission_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(membership_id, n)
        )
        """
    )
    execute("CREATE INDEX IF NOT EXISTS ix_installments_mid ON membership_installments(membership_id)")

    execute(
        """
        CREATE TABLE IF NOT EXISTS membership_payment_submissions (
            id TEXT PRIMARY KEY,
            membership_id TEXT NOT NULL,
            installment_id TEXT,
            season TEXT,
            payer_name TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            amount_reported REAL NOT NULL,
            currency TEXT NOT NULL,
            method TEXT NOT NULL,
            note TEXT,
            admin_note TEXT,
            status TEXT NOT NULL,
            applied_installment_ids TEXT,
            applied_total REAL,
            file_url TEXT,
            file_path TEXT,
            file_type TEXT,
            decided_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    execute("CREATE INDEX IF NOT EXISTS ix_submissions_mid ON membership_payment_submissions(membership_id)")

    # Small settings table (used to force password change on first login)
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def init_db(default_admin_hash: str | None = None) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default admin if a hash is given and no admin exists yet
    - Force password change on first login
    """
    _create_tables()

    if default_admin_hash is None:
        return

    admin = fetch_one("SELECT id FROM admin_users LIMIT 1")
    if not admin:
        execute(
            "INSERT INTO admin_users(username, password_hash, created_at) VALUES(?,?,?)",
            ("admin", default_admin_hash, server_timestamp()),
        )
        _set_setting("force_password_change", "1")
    elif _get_setting("force_password_change") is None:
        _set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    return _get_setting("force_password_change") == "1"


def clear_force_password_change() -> None:
    _set_setting("force_password_change", "0")
