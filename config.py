"""
config.py
Environment-backed settings (database file, pay-link base URL, upload limits).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HERE = Path(__file__).resolve().parent


def env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    db_file: Path
    base_url: str
    upload_dir: Path
    max_upload_mb: int
    pay_code_length: int
    plans_file: Path | None
    log_level: str
    seed_default_admin: bool


def load_settings() -> Settings:
    plans_file = env_str("DUES_PLANS_FILE", "").strip()
    return Settings(
        db_file=Path(env_str("DUES_DB_FILE", str(HERE / "dues.db"))),
        base_url=env_str("DUES_BASE_URL", "http://localhost:8501").rstrip("/"),
        upload_dir=Path(env_str("DUES_UPLOAD_DIR", str(HERE / "uploads"))),
        max_upload_mb=env_int("DUES_MAX_UPLOAD_MB", 10),
        pay_code_length=env_int("DUES_PAY_CODE_LENGTH", 7),
        plans_file=Path(plans_file) if plans_file else None,
        log_level=env_str("DUES_LOG_LEVEL", "INFO").upper(),
        seed_default_admin=env_bool("DUES_SEED_ADMIN", True),
    )


settings = load_settings()
