from __future__ import annotations

import logging

from erp_outbox.core.celery_app import celery
from erp_outbox.core.config import dispatcher_options, settings
from erp_outbox.core.db import SessionLocal
from erp_outbox.outbox.dispatcher import Dispatcher
from erp_outbox.outbox.senders.registry import build_senders
from erp_outbox.outbox.store import OutboxStore

log = logging.getLogger("outbox_tasks")


def build_dispatcher() -> Dispatcher:
    return Dispatcher(
        store=OutboxStore(SessionLocal),
        senders=build_senders(settings),
        options=dispatcher_options(settings),
    )


@celery.task(name="erp_outbox.tasks.outbox_tasks.dispatch_outbox")
def dispatch_outbox() -> dict:
    """Run one dispatcher cycle (scheduled by celery beat).

    PENDING -> PROCESSING -> SENT, or back to PENDING / FAILED per retry policy.
    Does nothing while DISPATCHER_ENABLED is false.
    """

    if not settings.DISPATCHER_ENABLED:
        return {"ok": True, "skipped": "DISPATCHER_ENABLED=false"}

    report = build_dispatcher().dispatch_once()
    return {"ok": True, **report.as_dict()}
