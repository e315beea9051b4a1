from __future__ import annotations

from celery import Celery

from erp_outbox.core.config import dispatcher_options, settings

_dispatcher = dispatcher_options(settings)

celery = Celery(
    "erp_outbox",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["erp_outbox.tasks.outbox_tasks"],
)

celery.conf.update(
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
    task_default_queue="default",
    beat_schedule={
        "dispatch-notification-outbox": {
            "task": "erp_outbox.tasks.outbox_tasks.dispatch_outbox",
            "schedule": _dispatcher.poll_seconds,
            # A late tick is superseded by the next one.
            "options": {"expires": _dispatcher.poll_seconds},
        }
    },
)
