from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from redis import Redis
from sqlalchemy import text

from erp_outbox.api.routers.notifications import router as notifications_router
from erp_outbox.core.config import settings
from erp_outbox.core.db import engine
from erp_outbox.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger("app")

app = FastAPI(title=settings.APP_NAME)


def _check_database() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.warning("Health: database not reachable: %s", e)
        return False


def _check_redis() -> bool:
    try:
        r = Redis.from_url(settings.REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
        return bool(r.ping())
    except Exception as e:
        log.warning("Health: redis not reachable: %s", e)
        return False


@app.get("/health")
def health() -> dict[str, Any]:
    deps = {
        "database": _check_database(),
        "redis": _check_redis(),
    }
    return {
        "ok": all(deps.values()),
        "deps": deps,
        "app": settings.APP_NAME,
        "dispatcher_enabled": settings.DISPATCHER_ENABLED,
    }


app.include_router(notifications_router, prefix="/admin/notifications", tags=["admin-notifications"])
