from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from erp_outbox.core.db import SessionLocal
from erp_outbox.core.errors import InvalidStateError, NotFoundError
from erp_outbox.core.outbox_policy import decide_retry
from erp_outbox.models.tables import LAST_ERROR_MAX, NotificationOutboxItem, NotificationStatus
from erp_outbox.util.time import FAR_FUTURE

log = logging.getLogger("outbox.store")

Item = NotificationOutboxItem

PENDING = NotificationStatus.PENDING.value
PROCESSING = NotificationStatus.PROCESSING.value
SENT = NotificationStatus.SENT.value
FAILED = NotificationStatus.FAILED.value


def _truncate_error(error: str) -> str:
    error = error or ""
    return error if len(error) <= LAST_ERROR_MAX else error[:LAST_ERROR_MAX]


class OutboxStore:
    """Durable queue of notification outbox items.

    Every method except `enqueue` runs in its own short transaction obtained from
    `session_factory`. State transitions are conditional updates guarded by the
    status the caller expects, so concurrent workers sharing one database never
    both win the same transition.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    # -- write path used by business transactions -------------------------------

    def enqueue(self, db: Session, item: NotificationOutboxItem) -> NotificationOutboxItem:
        """Add a Pending item to the caller's transaction. Never commits."""

        if item.status != NotificationStatus.PENDING:
            raise InvalidStateError(f"Only PENDING items can be enqueued (got {item.status})")
        db.add(item)
        db.flush()
        return item

    # -- dispatcher path ----------------------------------------------------------

    def claim_due_batch(self, now: datetime, limit: int) -> list[NotificationOutboxItem]:
        if limit <= 0:
            return []

        with self._session_factory() as db:
            candidate_ids = self._select_due_ids(db, now=now, limit=limit)

            claimed: list[str] = []
            for item_id in candidate_ids:
                # Compare-and-swap: only rows still PENDING and due are taken.
                n = (
                    db.query(Item)
                    .filter(Item.id == item_id, Item.status == PENDING, Item.next_attempt_at <= now)
                    .update(
                        {
                            Item.status: PROCESSING,
                            Item.attempts: Item.attempts + 1,
                            Item.last_attempt_at: now,
                            Item.updated_at: now,
                        },
                        synchronize_session=False,
                    )
                )
                if n == 1:
                    claimed.append(item_id)
                else:
                    log.debug("Outbox item %s claimed concurrently; skipping", item_id)
            db.commit()

            if not claimed:
                return []

            return db.query(Item).filter(Item.id.in_(claimed)).order_by(Item.created_at.asc()).all()

    def _select_due_ids(self, db: Session, *, now: datetime, limit: int) -> list[str]:
        rows = (
            db.query(Item.id)
            .filter(Item.status == PENDING, Item.next_attempt_at <= now)
            .order_by(Item.created_at.asc())
            .limit(limit)
            # Postgres: concurrent claimers skip each other's candidates. Ignored on SQLite.
            .with_for_update(skip_locked=True)
            .all()
        )
        return [r.id for r in rows]

    def renew_lease(self, item_id: str, attempts: int, now: datetime) -> bool:
        """Confirm the claim on an item right before sending it and restart its lease.

        False when the item is no longer PROCESSING with the claimed attempt count
        (recovered, reclaimed by another worker or reset by an operator).
        """

        with self._session_factory() as db:
            n = (
                db.query(Item)
                .filter(Item.id == item_id, Item.status == PROCESSING, Item.attempts == attempts)
                .update({Item.last_attempt_at: now, Item.updated_at: now}, synchronize_session=False)
            )
            db.commit()
            return n == 1

    def record_success(self, item_id: str, now: datetime) -> bool:
        """Mark an item Sent. Returns False when it already was (idempotent)."""

        with self._session_factory() as db:
            n = (
                db.query(Item)
                .filter(Item.id == item_id, Item.status.in_([PROCESSING, PENDING]))
                .update(
                    {
                        Item.status: SENT,
                        Item.sent_at: now,
                        Item.last_error: None,
                        Item.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if n == 1:
                return True

            current = db.query(Item.status).filter(Item.id == item_id).one_or_none()
            if current is None:
                raise NotFoundError(f"Outbox item {item_id} not found")
            if current.status != SENT:
                log.warning("Outbox item %s delivered but is %s; leaving as is", item_id, current.status)
            return False

    def record_failure(
        self,
        item_id: str,
        now: datetime,
        error: str,
        *,
        retry_delay: timedelta,
        max_attempts: int,
    ) -> NotificationOutboxItem | None:
        """Apply the retry policy to a failed attempt.

        Returns the updated item, or None when the item was no longer PROCESSING
        (its lease was recovered or an operator touched it meanwhile).
        """

        with self._session_factory() as db:
            row = db.query(Item.status, Item.attempts).filter(Item.id == item_id).one_or_none()
            if row is None:
                raise NotFoundError(f"Outbox item {item_id} not found")
            if row.status != PROCESSING:
                log.warning("Outbox item %s failed but is %s; outcome not recorded", item_id, row.status)
                return None

            decision = decide_retry(row.attempts, now, max_attempts=max_attempts, retry_delay=retry_delay)
            values = {
                Item.status: FAILED if decision.terminal else PENDING,
                Item.next_attempt_at: decision.next_attempt_at,
                Item.last_error: _truncate_error(error),
                Item.updated_at: now,
            }
            n = (
                db.query(Item)
                .filter(Item.id == item_id, Item.status == PROCESSING, Item.attempts == row.attempts)
                .update(values, synchronize_session=False)
            )
            db.commit()
            if n != 1:
                log.warning("Outbox item %s changed while recording failure; outcome not recorded", item_id)
                return None
            return db.query(Item).filter(Item.id == item_id).one()

    def recover_expired_leases(self, now: datetime, *, lease: timedelta, max_attempts: int) -> int:
        """Release PROCESSING items whose worker never resolved them.

        Items below the attempt ceiling become due again immediately; the rest fail.
        """

        cutoff = now - lease
        recovered = 0
        with self._session_factory() as db:
            stale = (
                db.query(Item.id, Item.attempts, Item.last_attempt_at)
                .filter(Item.status == PROCESSING, Item.last_attempt_at <= cutoff)
                .all()
            )
            for row in stale:
                terminal = row.attempts >= max_attempts
                n = (
                    db.query(Item)
                    .filter(
                        Item.id == row.id,
                        Item.status == PROCESSING,
                        Item.last_attempt_at == row.last_attempt_at,
                    )
                    .update(
                        {
                            Item.status: FAILED if terminal else PENDING,
                            Item.next_attempt_at: FAR_FUTURE if terminal else now,
                            Item.last_error: f"Processing lease expired (claimed at {row.last_attempt_at.isoformat()})",
                            Item.updated_at: now,
                        },
                        synchronize_session=False,
                    )
                )
                if n == 1:
                    recovered += 1
                    log.warning(
                        "Outbox item %s lease expired after attempt %s -> %s",
                        row.id,
                        row.attempts,
                        FAILED if terminal else PENDING,
                    )
            db.commit()
        return recovered

    # -- operator path ------------------------------------------------------------

    def retry_now(self, item_id: str, now: datetime) -> NotificationOutboxItem:
        """Make a FAILED or PENDING item due immediately. Attempts are preserved."""

        with self._session_factory() as db:
            n = (
                db.query(Item)
                .filter(Item.id == item_id, Item.status.in_([FAILED, PENDING]))
                .update(
                    {Item.status: PENDING, Item.next_attempt_at: now, Item.updated_at: now},
                    synchronize_session=False,
                )
            )
            db.commit()
            item = db.query(Item).filter(Item.id == item_id).one_or_none()
            if item is None:
                raise NotFoundError(f"Outbox item {item_id} not found")
            if n != 1:
                if item.status == PROCESSING:
                    raise InvalidStateError("Notification is being delivered; retry it once the attempt resolves.")
                raise InvalidStateError("Sent notifications cannot be retried.")
            log.info("Outbox item %s queued for retry by operator (attempts=%s)", item_id, item.attempts)
            return item

    # -- reads ----------------------------------------------------------------------

    def get(self, item_id: str) -> NotificationOutboxItem | None:
        with self._session_factory() as db:
            return db.query(Item).filter(Item.id == item_id).one_or_none()

    def list_items(
        self, *, status: NotificationStatus | str | None = None, skip: int = 0, take: int = 100
    ) -> list[NotificationOutboxItem]:
        skip = max(0, skip)
        take = min(500, max(1, take))
        with self._session_factory() as db:
            q = db.query(Item)
            if status is not None:
                q = q.filter(Item.status == NotificationStatus(status).value)
            return q.order_by(Item.created_at.desc()).offset(skip).limit(take).all()

    def count_by_status(self) -> dict[str, int]:
        with self._session_factory() as db:
            rows = db.query(Item.status, func.count(Item.id)).group_by(Item.status).all()
        counts = {s.value: 0 for s in NotificationStatus}
        counts.update({status: n for status, n in rows})
        return counts
