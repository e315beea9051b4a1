from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from erp_outbox.core.config import NotificationOptions, notification_options, settings
from erp_outbox.core.db import UNIT_OF_WORK_KEY
from erp_outbox.core.errors import OutboxValidationError, UnitOfWorkRequired
from erp_outbox.models.tables import NotificationChannel, NotificationOutboxItem, NotificationStatus
from erp_outbox.outbox.store import OutboxStore
from erp_outbox.schemas.notifications import EnqueueRequest
from erp_outbox.util.ids import new_uuid
from erp_outbox.util.time import now_utc

log = logging.getLogger("outbox.service")


class NotificationService:
    """Write path business services use to queue notifications.

    Bound to the caller's session: the outbox row commits or rolls back together
    with the business change. The session must come from `unit_of_work()`.
    Scripts that manage their own commit may pass `allow_outside_unit_of_work=True`;
    that is the only supported way around the check.
    """

    def __init__(
        self,
        db: Session,
        *,
        options: NotificationOptions | None = None,
        clock: Callable[[], datetime] = now_utc,
        store: OutboxStore | None = None,
        allow_outside_unit_of_work: bool = False,
    ) -> None:
        self._db = db
        self._options = options or notification_options(settings)
        self._clock = clock
        self._store = store or OutboxStore()
        self._allow_outside = allow_outside_unit_of_work

    @property
    def enabled(self) -> bool:
        return self._options.enabled

    def enqueue(
        self,
        channel: NotificationChannel | str,
        recipient: str,
        body: str,
        *,
        subject: str | None = None,
        reference_type: str | None = None,
        reference_id: UUID | str | None = None,
    ) -> NotificationOutboxItem | None:
        """Validate and queue one notification.

        Returns None without queueing when notifications or the channel are
        switched off in configuration.
        """

        if not self._allow_outside and not self._db.info.get(UNIT_OF_WORK_KEY):
            raise UnitOfWorkRequired("Notifications must be enqueued inside a unit_of_work() session")

        try:
            req = EnqueueRequest(
                channel=channel,
                recipient=recipient,
                subject=subject,
                body=body,
                reference_type=reference_type,
                reference_id=reference_id,
            )
        except ValidationError as e:
            raise OutboxValidationError(f"Invalid notification: {e.error_count()} error(s)", errors=e.errors()) from e

        if not self._channel_enabled(req.channel):
            log.debug("Notifications disabled for %s; not queueing to %s", req.channel.value, req.recipient)
            return None

        now = self._clock()
        item = NotificationOutboxItem(
            id=new_uuid(),
            channel=req.channel.value,
            recipient=req.recipient,
            subject=req.subject,
            body=req.body,
            status=NotificationStatus.PENDING.value,
            attempts=0,
            next_attempt_at=now,
            last_attempt_at=None,
            sent_at=None,
            last_error=None,
            reference_type=req.reference_type,
            reference_id=req.reference_id,
            created_at=now,
            updated_at=None,
        )
        self._store.enqueue(self._db, item)
        log.info("Queued %s notification %s (ref=%s:%s)", item.channel, item.id, item.reference_type, item.reference_id)
        return item

    def enqueue_email(
        self,
        to: str,
        subject: str,
        body: str,
        *,
        reference_type: str | None = None,
        reference_id: UUID | str | None = None,
    ) -> NotificationOutboxItem | None:
        return self.enqueue(
            NotificationChannel.EMAIL,
            to,
            body,
            subject=subject,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    def enqueue_sms(
        self,
        to: str,
        body: str,
        *,
        reference_type: str | None = None,
        reference_id: UUID | str | None = None,
    ) -> NotificationOutboxItem | None:
        return self.enqueue(
            NotificationChannel.SMS,
            to,
            body,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    def _channel_enabled(self, channel: NotificationChannel) -> bool:
        o = self._options
        if not o.enabled:
            return False
        if channel == NotificationChannel.EMAIL:
            return o.email_enabled
        return o.sms_enabled
