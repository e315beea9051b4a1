from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from erp_outbox.core.config import settings

# Marker placed in Session.info by unit_of_work(); the enqueue path refuses sessions without it.
UNIT_OF_WORK_KEY = "erp_outbox.unit_of_work"


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        # For in-memory SQLite (tests) we need a single shared connection across threads.
        # StaticPool makes the same connection reused for the whole process.
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            pool_pre_ping=True,
        )
    return create_engine(db_url, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = make_session_factory(engine)


@contextmanager
def unit_of_work(session_factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Business transaction boundary.

    Commits on normal exit, rolls back on any exception. Outbox items enqueued
    through the yielded session share its fate.
    """

    db = (session_factory or SessionLocal)()
    db.info[UNIT_OF_WORK_KEY] = True
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
