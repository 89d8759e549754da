"""
Application settings.

Typed view over the environment (see config.env) shared by the API server,
job services and the trust worker. Cached; call reset_settings_cache() after
changing the environment (tests).
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from backend_careconnect.config.env import (
    get_database_url,
    get_env_bool,
    get_env_float,
    get_env_int,
    get_env_str,
)


@dataclass(frozen=True)
class Settings:
    database_url: str
    platform_fee_percent: int = 10
    currency: str = "THB"
    on_time_grace_sec: int = 15 * 60
    geofence_max_radius_m: float = 1000.0
    min_withdrawal_amount: int = 500
    trust_worker_interval_sec: float = 300.0
    trust_worker_enabled: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    """Return the current application settings (cached)."""
    fee = get_env_int("PLATFORM_FEE_PERCENT", 10)
    if not 0 <= fee <= 100:
        raise ValueError("PLATFORM_FEE_PERCENT must be between 0 and 100")
    return Settings(
        database_url=get_database_url(),
        platform_fee_percent=fee,
        currency=get_env_str("CARECONNECT_CURRENCY", "THB"),
        on_time_grace_sec=get_env_int("ON_TIME_GRACE_SEC", 15 * 60),
        geofence_max_radius_m=get_env_float("GEOFENCE_MAX_RADIUS_M", 1000.0),
        min_withdrawal_amount=get_env_int("MIN_WITHDRAWAL_AMOUNT", 500),
        trust_worker_interval_sec=get_env_float("TRUST_WORKER_INTERVAL_SEC", 300.0),
        trust_worker_enabled=get_env_bool("TRUST_WORKER_ENABLED", False),
        api_host=get_env_str("API_HOST", "0.0.0.0"),
        api_port=get_env_int("API_PORT", 8000),
    )


def reset_settings_cache() -> None:
    get_settings.cache_clear()
