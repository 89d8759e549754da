"""
Structured logging for Backend CareConnect.

JSON logs with timestamp, event_type, and domain keys (job_id, user_id, wallet_id).
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_careconnect.care_logging.logger import configure_logging, get_logger, job_context

__all__ = ["configure_logging", "get_logger", "job_context"]
