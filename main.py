"""
Main entrypoint.

    python main.py api            FastAPI server (periodic runner in a background
                                  thread when TRUST_WORKER_ENABLED=1)
    python main.py trust-worker   periodic runner only (trust batch + post expiry)
    python main.py trust-once     single trust batch, prints the summary as JSON
    python main.py expire         expire stale posts once

Env: CARECONNECT_DB_URL / DATABASE_URL / CARECONNECT_DB_PATH, API_HOST, API_PORT,
TRUST_WORKER_INTERVAL_SEC, LOG_LEVEL, LOG_FORMAT.

API-only: uvicorn backend_careconnect.api_server.app:app --host 0.0.0.0 --port 8000
"""

import argparse
import json
import os
import signal
import threading

# Configure structured JSON logging before other imports that may log
from backend_careconnect.care_logging import configure_logging, get_logger

logger = get_logger("main")


def _run_api() -> None:
    from backend_careconnect.api_server.app import app
    from backend_careconnect.config import get_settings
    import uvicorn

    settings = get_settings()
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


def _run_trust_worker() -> None:
    from backend_careconnect.agent_worker.runner import PeriodicRunnerConfig, run_periodic_worker
    from backend_careconnect.database import init_db

    init_db()
    stop_event = threading.Event()

    def _stop(signum, frame) -> None:
        logger.info("main_shutdown_signal", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    run_periodic_worker(PeriodicRunnerConfig.from_settings(), stop_event)


def _run_trust_once() -> None:
    from backend_careconnect.database import init_db
    from backend_careconnect.trust.worker import run_trust_level_worker

    init_db()
    print(json.dumps(run_trust_level_worker(), indent=2, default=str))


def _run_expire() -> None:
    from backend_careconnect.database import init_db
    from backend_careconnect.jobs.service import expire_stale_posts

    init_db()
    print(json.dumps(expire_stale_posts(), indent=2))


COMMANDS = {
    "api": _run_api,
    "trust-worker": _run_trust_worker,
    "trust-once": _run_trust_once,
    "expire": _run_expire,
}


def main() -> None:
    parser = argparse.ArgumentParser(description="Backend CareConnect")
    parser.add_argument("command", nargs="?", default="api", choices=sorted(COMMANDS))
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    parser.add_argument("--log-format", default=None, choices=("json", "console"), help="overrides LOG_FORMAT")
    args = parser.parse_args()
    if args.log_level or args.log_format:
        configure_logging(args.log_level, args.log_format)
    COMMANDS[args.command]()


if __name__ == "__main__":
    main()
