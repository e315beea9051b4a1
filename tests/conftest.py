from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

# Settings() is built at import time; provide the minimal env before any erp_outbox import.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ADMIN_TOKEN", "change-me-admin-token")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory():
    from erp_outbox.core.db import make_engine, make_session_factory
    from erp_outbox.models import tables  # noqa: F401  (registers the table)
    from erp_outbox.models.base import Base

    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    try:
        yield make_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def store(session_factory):
    from erp_outbox.outbox.store import OutboxStore

    return OutboxStore(session_factory)


@pytest.fixture
def enqueue(session_factory, store, clock):
    """Commit one notification through the real enqueue path and return its id."""

    from erp_outbox.core.config import NotificationOptions
    from erp_outbox.core.db import unit_of_work
    from erp_outbox.outbox.service import NotificationService

    def _enqueue(channel="EMAIL", recipient="buyer@example.com", body="Your order shipped.", **kw) -> str:
        with unit_of_work(session_factory) as db:
            svc = NotificationService(db, options=NotificationOptions(enabled=True), clock=clock, store=store)
            item = svc.enqueue(channel, recipient, body, **kw)
            return item.id

    return _enqueue
