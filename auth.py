"""
auth.py
Admin login for the dues back office (bcrypt hashes in admin_users).

The engine modules never check roles; the UI only reaches validate/reject
after authenticate() succeeded.
"""

from __future__ import annotations

import bcrypt

import db
from errors import ValidationError

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"
MIN_PASSWORD_LENGTH = 8
BCRYPT_ROUNDS = 12


def _secret(password: str) -> bytes:
    # bcrypt ignores everything past 72 bytes and newer releases raise on it.
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_secret(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in the table
        return False


def ensure_default_admin() -> None:
    """Create tables and, on an empty admin table, the default admin."""
    db.init_db(hash_password(DEFAULT_ADMIN_PASSWORD))


def authenticate(username: str, password: str) -> bool:
    row = db.fetch_one("SELECT password_hash FROM admin_users WHERE username = ?", ((username or "").strip(),))
    if not row:
        return False
    return verify_password(password or "", row["password_hash"])


def password_problems(new_password: str, confirm: str) -> list[str]:
    problems = []
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if new_password != confirm:
        problems.append("Passwords do not match.")
    if new_password == DEFAULT_ADMIN_PASSWORD:
        problems.append("Choose a password other than the default.")
    return problems


def change_password(username: str, new_password: str, confirm: str) -> None:
    problems = password_problems(new_password, confirm)
    if problems:
        raise ValidationError(problems)
    db.execute(
        "UPDATE admin_users SET password_hash = ? WHERE username = ?",
        (hash_password(new_password), username),
    )
    db.clear_force_password_change()
