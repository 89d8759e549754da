"""
Append-only enforcement for ledger_transactions, trust_score_history,
job_transition_logs and audit_events.

Two layers: database triggers created alongside the tables (SQLite and
PostgreSQL), and ORM mapper events that refuse UPDATE / DELETE flushes before
they reach the database.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import DDL, event

from backend_careconnect.core.exceptions import CareConnectError
from backend_careconnect.database.models import APPEND_ONLY_MODELS, Base

_SQLITE_NO_UPDATE = DDL(
    "CREATE TRIGGER IF NOT EXISTS %(table)s_no_update BEFORE UPDATE ON %(table)s "
    "BEGIN SELECT RAISE(ABORT, '%(table)s is append-only'); END"
)
_SQLITE_NO_DELETE = DDL(
    "CREATE TRIGGER IF NOT EXISTS %(table)s_no_delete BEFORE DELETE ON %(table)s "
    "BEGIN SELECT RAISE(ABORT, '%(table)s is append-only'); END"
)
_PG_REJECT_FUNCTION = DDL(
    "CREATE OR REPLACE FUNCTION careconnect_reject_mutation() RETURNS trigger AS $$ "
    "BEGIN RAISE EXCEPTION '%% is append-only', TG_TABLE_NAME; END; "
    "$$ LANGUAGE plpgsql"
)
_PG_TRIGGER = DDL(
    "CREATE TRIGGER %(table)s_append_only BEFORE UPDATE OR DELETE ON %(table)s "
    "FOR EACH ROW EXECUTE FUNCTION careconnect_reject_mutation()"
)

_installed = False


class AppendOnlyViolation(CareConnectError):
    status_code = 500
    code = "APPEND_ONLY_VIOLATION"


def _reject_update(mapper: Any, connection: Any, target: Any) -> None:
    raise AppendOnlyViolation(f"{mapper.local_table.name} is append-only; updates are not allowed")


def _reject_delete(mapper: Any, connection: Any, target: Any) -> None:
    raise AppendOnlyViolation(f"{mapper.local_table.name} is append-only; deletes are not allowed")


def install() -> None:
    """Register trigger DDL and ORM guards once per process."""
    global _installed
    if _installed:
        return
    event.listen(Base.metadata, "before_create", _PG_REJECT_FUNCTION.execute_if(dialect="postgresql"))
    for model in APPEND_ONLY_MODELS:
        table = model.__table__
        event.listen(table, "after_create", _SQLITE_NO_UPDATE.execute_if(dialect="sqlite"))
        event.listen(table, "after_create", _SQLITE_NO_DELETE.execute_if(dialect="sqlite"))
        event.listen(table, "after_create", _PG_TRIGGER.execute_if(dialect="postgresql"))
        event.listen(model, "before_update", _reject_update)
        event.listen(model, "before_delete", _reject_delete)
    _installed = True
