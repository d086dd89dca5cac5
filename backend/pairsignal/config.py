from __future__ import annotations

import os
from typing import Optional

DEFAULT_PORT = 3001
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 10.0
DEFAULT_SEND_TIMEOUT_SECONDS = 5.0


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        return default
    return value if value > 0 else default


PORT = _int_env("PORT", DEFAULT_PORT) or DEFAULT_PORT
HOST = os.getenv("HOST", "0.0.0.0")
HEARTBEAT_INTERVAL_SECONDS = _float_env("HEARTBEAT_INTERVAL_SECONDS", DEFAULT_HEARTBEAT_INTERVAL_SECONDS)
SEND_TIMEOUT_SECONDS = _float_env("SEND_TIMEOUT_SECONDS", DEFAULT_SEND_TIMEOUT_SECONDS)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "false").lower() == "true"
LOG_FILE = "pairsignal.log"

TRUSTED_HOSTS: Optional[list[str]] = (
    [h.strip() for h in os.getenv("TRUSTED_HOSTS", "").split(",") if h.strip()] or None
)
