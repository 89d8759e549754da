"""
Pytest fixtures for CareConnect tests. Uses a temporary SQLite DB per test.
"""

from __future__ import annotations

import pytest

from backend_careconnect.core.clock import now_ts
from backend_careconnect.trust.signals import TrustPrerequisites, TrustSignals, TrustSignalSource

HOUR = 3600


class FakeSignalSource(TrustSignalSource):
    """In-memory signals per user; users listed in failing raise on read."""

    def __init__(self, signals=None, prerequisites=None, failing=()):
        self.signals = dict(signals or {})
        self.prerequisites = dict(prerequisites or {})
        self.failing = set(failing)

    def get_signals(self, user_id):
        if user_id in self.failing:
            raise RuntimeError(f"signal store unavailable for {user_id}")
        return self.signals.get(user_id, TrustSignals())

    def get_prerequisites(self, user_id):
        return self.prerequisites.get(user_id, TrustPrerequisites())


@pytest.fixture
def care_db(tmp_path, monkeypatch):
    """
    Point the app at a temporary SQLite DB and create tables.
    Resets settings and engine caches so each test gets a fresh DB. Unset DB URLs so we use SQLite.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CARECONNECT_DB_URL", raising=False)
    monkeypatch.delenv("PLATFORM_FEE_PERCENT", raising=False)
    monkeypatch.setenv("CARECONNECT_DB_PATH", str(tmp_path / "careconnect.db"))

    from backend_careconnect import database
    from backend_careconnect.config import reset_settings_cache

    reset_settings_cache()
    database.reset_engine_for_test()
    database.init_db()
    yield database
    database.reset_engine_for_test()
    reset_settings_cache()


@pytest.fixture
def client(care_db):
    """FastAPI TestClient. Depends on care_db so the temp DB is set before the app runs."""
    from fastapi.testclient import TestClient

    from backend_careconnect.api_server.server import app

    return TestClient(app)


@pytest.fixture
def make_user(care_db):
    """
    Register a user and run one trust recompute so the level matches the
    verification flags (phone → L1, + KYC → L2). Optionally top up the wallet.
    """
    from backend_careconnect.accounts import service as accounts
    from backend_careconnect.trust.worker import update_user_trust

    def _make(role, *, phone=True, kyc=False, bank=False, balance=0, certifications=None):
        user = accounts.register_user(role, f"{role} user", is_phone_verified=phone)
        if kyc:
            accounts.record_kyc(user["id"], "approved")
        if bank:
            accounts.add_bank_account(user["id"], "Test Bank", "1234", is_verified=True)
        if certifications is not None:
            accounts.upsert_caregiver_profile(user["id"], certifications=certifications)
        if role != "admin":
            update_user_trust(user["id"])
        if balance:
            accounts.top_up(user["id"], balance)
        return accounts.get_user_profile(user["id"])

    return _make


@pytest.fixture
def base_day():
    """Midnight (UTC) two days from now; job windows are built as hour offsets from it."""
    return (now_ts() // 86400 + 2) * 86400


@pytest.fixture
def make_job(care_db, base_day):
    from backend_careconnect.jobs import service

    def _make(hirer_id, start_hour=9, end_hour=13, *, hourly_rate=200, **kwargs):
        return service.create_job_post(
            hirer_id,
            kwargs.pop("title", "Elderly care visit"),
            base_day + start_hour * HOUR,
            base_day + end_hour * HOUR,
            hourly_rate,
            **kwargs,
        )

    return _make


@pytest.fixture
def posted_job(make_user, make_job):
    """A hirer with 1000 available and a published 4h x 200 job (total 800, fee 80)."""
    from backend_careconnect.jobs import service

    hirer = make_user("hirer", balance=1000)
    job = make_job(hirer["id"])
    service.publish_job_post(job["id"], hirer["id"])
    return hirer, job


@pytest.fixture
def fake_signal_source():
    return FakeSignalSource
