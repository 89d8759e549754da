"""
Environment variable loading for CareConnect.

- CARECONNECT_DB_URL / DATABASE_URL: SQLAlchemy URL (PostgreSQL in production)
- CARECONNECT_DB_PATH: SQLite file used when no URL is set (default careconnect.db)
- PLATFORM_FEE_PERCENT: fee taken at settlement (default 10)
- TRUST_WORKER_INTERVAL_SEC / TRUST_WORKER_ENABLED: periodic runner
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_SQLITE_PATH = "careconnect.db"
TRUTHY = ("1", "true", "yes", "on")


def load_careconnect_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    if _ENV_PATH.is_file():
        load_dotenv(_ENV_PATH, override=False)


def get_env_str(name: str, default: str = "") -> str:
    load_careconnect_env()
    return (os.getenv(name) or "").strip() or default


def get_env_int(name: str, default: int) -> int:
    raw = get_env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def get_env_float(name: str, default: float) -> float:
    raw = get_env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = get_env_str(name).lower()
    if not raw:
        return default
    return raw in TRUTHY


def get_database_url() -> str:
    """
    Return the SQLAlchemy URL.
    Order: CARECONNECT_DB_URL > DATABASE_URL > sqlite:///CARECONNECT_DB_PATH.
    """
    url = get_env_str("CARECONNECT_DB_URL") or get_env_str("DATABASE_URL")
    if url:
        return url
    path = get_env_str("CARECONNECT_DB_PATH", DEFAULT_SQLITE_PATH)
    return f"sqlite:///{path}"


def mask_database_url(url: str) -> str:
    """Strip credentials and query string so the URL is safe to log."""
    without_query = url.split("?")[0]
    scheme, sep, rest = without_query.partition("://")
    if not sep:
        return without_query
    host_part = rest.split("@")[-1]
    return f"{scheme}://{host_part}"
