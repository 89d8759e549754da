"""
Structured logging for the marketplace services.

Every record is one JSON object (LOG_FORMAT=console for local runs) with
event_type, level, logger and an ISO timestamp. Money and status values are
logged as plain scalars so the lines can be grouped by job_id, user_id,
wallet_id or withdrawal_id.

job_context() binds job_id for the duration of a block through structlog
contextvars, so ledger and escrow lines written inside a job transition carry
the job they belong to without passing it around.

Imports nothing from backend_careconnect; every other package imports this one.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

import structlog

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "json"


def _timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's positional 'event' becomes event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _plain_values(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """JobStatus and other enums are logged by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    (Re)configure structlog. level and fmt default to LOG_LEVEL / LOG_FORMAT.
    Called once on import; main.py may call it again before starting a command.
    """
    level_name = (level or os.getenv("LOG_LEVEL", DEFAULT_LEVEL)).upper()
    level_value = getattr(logging, level_name, logging.INFO)
    fmt = (fmt or os.getenv("LOG_FORMAT", DEFAULT_FORMAT)).strip().lower()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        _timestamp,
        _event_type,
        _plain_values,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger:

        logger = get_logger(__name__)
        logger.info("job_transition_committed", job_id=job_id, from_state="posted", to_state="assigned")
    """
    return structlog.get_logger(name).bind(logger=name)


@contextmanager
def job_context(job_id: str, **extra: Any) -> Iterator[None]:
    """Bind job_id (and extra keys) to every log line written inside the block."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, **extra):
        yield
