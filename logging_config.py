"""
logging_config.py
Logger factory for the dues engine and one-time handler setup.
"""

from __future__ import annotations

import logging

_LOGGER_PREFIX = "dues"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the dues namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a single stream handler to the dues root logger.
    Safe to call on every Streamlit rerun: a second call only updates the level.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(h, "_dues_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._dues_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return root
