"""
Periodic runner: background loop for the trust worker and post expiry.

Started by the FastAPI lifespan (TRUST_WORKER_ENABLED=1) or standalone via
`main.py trust-worker`. Runs in a background thread, never blocks the API.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.jobs.service import expire_stale_posts
from backend_careconnect.trust.signals import TrustSignalSource
from backend_careconnect.trust.worker import default_signal_source, run_trust_level_worker

logger = get_logger(__name__)

DEFAULT_PERIODIC_INTERVAL_SEC = 300.0
SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0


@dataclass
class PeriodicRunnerConfig:
    """Config for the periodic background runner (trust batch + stale post expiry)."""

    interval_sec: float = DEFAULT_PERIODIC_INTERVAL_SEC
    run_trust: bool = True
    expire_posts: bool = True
    signal_source: TrustSignalSource | None = None

    @classmethod
    def from_settings(cls) -> "PeriodicRunnerConfig":
        return cls(interval_sec=get_settings().trust_worker_interval_sec)


def run_tick(config: PeriodicRunnerConfig, tick: int = 0) -> dict[str, object]:
    """One pass of the runner. Each step's failure is logged and does not stop the other."""
    summary: dict[str, object] = {"tick": tick}
    if config.expire_posts:
        try:
            summary["expiry"] = expire_stale_posts()
        except Exception as e:
            logger.exception("periodic_expiry_failed", tick=tick, error=str(e))
            summary["expiry_error"] = str(e)
    if config.run_trust:
        try:
            result = run_trust_level_worker(config.signal_source or default_signal_source())
            summary["trust"] = {k: result[k] for k in ("total", "updated", "unchanged", "errors")}
        except Exception as e:
            logger.exception("periodic_trust_failed", tick=tick, error=str(e))
            summary["trust_error"] = str(e)
    return summary


def run_periodic_worker(
    config: PeriodicRunnerConfig,
    stop_event: threading.Event,
) -> None:
    """
    Every interval_sec, expire stale posts and run the trust batch. Runs until
    stop_event is set; a failing tick is logged and the loop continues.
    """
    interval = max(1.0, config.interval_sec)
    logger.info("periodic_runner_started", interval_sec=interval)
    tick_count = 0
    while not stop_event.is_set():
        tick_start = time.monotonic()
        tick_count += 1
        try:
            summary = run_tick(config, tick_count)
            logger.info("periodic_tick_done", **summary)
        except Exception as e:
            logger.exception("periodic_tick_failed", tick=tick_count, error=str(e))
        # Sleep until next tick; wake periodically to check stop_event
        deadline = tick_start + interval
        while not stop_event.is_set() and time.monotonic() < deadline:
            stop_event.wait(timeout=min(1.0, max(0, deadline - time.monotonic())))
    logger.info("periodic_runner_stopped", tick_count=tick_count)


def start_background_runner(config: PeriodicRunnerConfig) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_periodic_worker,
        args=(config, stop_event),
        name="careconnect-periodic-runner",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def stop_background_runner(thread: threading.Thread, stop_event: threading.Event) -> None:
    stop_event.set()
    thread.join(timeout=SHUTDOWN_JOIN_TIMEOUT_SEC)
    if thread.is_alive():
        logger.warning("periodic_runner_join_timeout", timeout_sec=SHUTDOWN_JOIN_TIMEOUT_SEC)
