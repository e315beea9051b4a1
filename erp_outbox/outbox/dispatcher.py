from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from erp_outbox.core.config import DispatcherOptions
from erp_outbox.core.errors import DeliveryError
from erp_outbox.core.outbox_policy import RetryPolicy
from erp_outbox.models.tables import NotificationOutboxItem, NotificationStatus
from erp_outbox.outbox.senders.registry import SenderRegistry
from erp_outbox.outbox.store import OutboxStore
from erp_outbox.util.time import now_utc

log = logging.getLogger("outbox.dispatcher")

# While disabled the loop only re-reads its state this often.
DISABLED_IDLE_SECONDS = 5.0


@dataclass
class DispatchReport:
    recovered: int = 0
    claimed: int = 0
    sent: int = 0
    retrying: int = 0
    failed: int = 0
    unrecorded: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class Dispatcher:
    """Claims due outbox items and delivers them through the channel senders.

    One cycle: recover expired leases, claim a batch, deliver every item
    independently, record each outcome. Delivery failures are recorded on the
    item and never leave this class.

    Each item's lease is renewed right before its send and its outcome is
    recorded as soon as the send returns, so the lease only has to outlast a
    single send, not the whole batch.
    """

    def __init__(
        self,
        *,
        store: OutboxStore,
        senders: SenderRegistry,
        options: DispatcherOptions,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.senders = senders
        self.options = options
        self.policy = RetryPolicy.from_options(options)
        self._clock = clock

    def dispatch_once(self) -> DispatchReport:
        o = self.options
        report = DispatchReport()
        if not o.enabled:
            return report

        now = self._clock()
        report.recovered = self.store.recover_expired_leases(
            now, lease=timedelta(seconds=o.lease_seconds), max_attempts=o.max_attempts
        )

        items = self.store.claim_due_batch(now, o.batch_size)
        report.claimed = len(items)
        if not items:
            return report

        log.debug("Dispatching %s outbox item(s)", len(items))

        if o.send_concurrency > 1 and len(items) > 1:
            self._dispatch_parallel(items, report)
        else:
            for item in items:
                if self._hold(item, report):
                    self._record(item, self._deliver(item), report)

        log.info(
            "Outbox cycle: claimed=%s sent=%s retrying=%s failed=%s recovered=%s skipped=%s unrecorded=%s",
            report.claimed,
            report.sent,
            report.retrying,
            report.failed,
            report.recovered,
            report.skipped,
            report.unrecorded,
        )
        return report

    def _dispatch_parallel(self, items: list[NotificationOutboxItem], report: DispatchReport) -> None:
        # At most send_concurrency sends in flight, so a lease is only renewed when
        # its send can start at once. Database access stays on this thread.
        limit = self.options.send_concurrency
        queue = iter(items)
        in_flight: dict[Future, NotificationOutboxItem] = {}

        with ThreadPoolExecutor(max_workers=min(limit, len(items))) as pool:
            while True:
                for item in queue:
                    if self._hold(item, report):
                        in_flight[pool.submit(self._deliver, item)] = item
                        if len(in_flight) >= limit:
                            break
                if not in_flight:
                    return

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    self._record(in_flight.pop(future), future.result(), report)

    def _hold(self, item: NotificationOutboxItem, report: DispatchReport) -> bool:
        """Renew the claim on `item`; False means another party owns it now and it must not be sent."""

        try:
            held = self.store.renew_lease(item.id, item.attempts, self._clock())
        except Exception:
            # Left PROCESSING; lease recovery makes it due again.
            log.exception("Could not renew lease on outbox item %s; not sending", item.id)
            held = False
        else:
            if not held:
                log.warning("Outbox item %s is no longer held by this worker; not sending", item.id)
        if not held:
            report.skipped += 1
        return held

    def _deliver(self, item: NotificationOutboxItem) -> str | None:
        """Returns None on success, otherwise the diagnostic to record."""

        try:
            self.senders.deliver(item)
            return None
        except DeliveryError as e:
            log.warning("Delivery of %s item %s to %s failed: %s", item.channel, item.id, item.recipient, e)
            return str(e) or type(e).__name__
        except Exception as e:
            log.exception("Unexpected error delivering outbox item %s", item.id)
            return f"{type(e).__name__}: {e}"

    def _record(self, item: NotificationOutboxItem, error: str | None, report: DispatchReport) -> None:
        try:
            if error is None:
                self.store.record_success(item.id, self._clock())
                report.sent += 1
                return

            updated = self.store.record_failure(
                item.id,
                self._clock(),
                error,
                retry_delay=self.policy.delay_for(item.attempts),
                max_attempts=self.options.max_attempts,
            )
            if updated is None:
                report.unrecorded += 1
            elif updated.status == NotificationStatus.FAILED:
                report.failed += 1
                log.error("Outbox item %s failed permanently after %s attempt(s): %s", item.id, updated.attempts, error)
            else:
                report.retrying += 1
        except Exception:
            # Left PROCESSING; lease recovery makes it due again.
            report.unrecorded += 1
            log.exception("Could not record outcome for outbox item %s", item.id)

    def run_forever(self, stop_event: threading.Event) -> None:
        """Poll until `stop_event` is set.

        The wait between cycles is the only suspension point; a cycle in progress
        always finishes resolving the items it claimed.
        """

        log.info(
            "Outbox dispatcher started (enabled=%s poll=%ss batch=%s max_attempts=%s)",
            self.options.enabled,
            self.options.poll_seconds,
            self.options.batch_size,
            self.options.max_attempts,
        )
        while not stop_event.is_set():
            if not self.options.enabled:
                stop_event.wait(max(DISABLED_IDLE_SECONDS, self.options.poll_seconds))
                continue

            try:
                self.dispatch_once()
            except Exception:
                log.exception("Notification dispatcher iteration failed.")

            stop_event.wait(self.options.poll_seconds)
        log.info("Outbox dispatcher stopped")
