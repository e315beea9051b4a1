from __future__ import annotations

import threading
from collections import Counter
from datetime import timedelta

from erp_outbox.core.config import DispatcherOptions
from erp_outbox.core.errors import DeliveryError
from erp_outbox.models.tables import NotificationStatus
from erp_outbox.outbox.dispatcher import Dispatcher
from erp_outbox.outbox.senders.registry import SenderRegistry
from erp_outbox.util.time import FAR_FUTURE


class FakeSender:
    def __init__(self, fail_for: dict | None = None, on_send=None) -> None:
        self.sent = []
        self.fail_for = fail_for or {}
        self.on_send = on_send

    def send(self, message) -> None:
        if self.on_send:
            self.on_send(message)
        exc = self.fail_for.get(message.to)
        if exc is not None:
            raise exc
        self.sent.append(message)


def _dispatcher(store, clock, email=None, sms=None, **opts) -> Dispatcher:
    options = DispatcherOptions(**{"enabled": True, "max_attempts": 3, "retry_delay_seconds": 5, **opts})
    return Dispatcher(
        store=store,
        senders=SenderRegistry(email=email or FakeSender(), sms=sms or FakeSender()),
        options=options,
        clock=clock,
    )


def test_first_attempt_success_marks_sent(store, enqueue, clock):
    email = FakeSender()
    item_id = enqueue(recipient="customer@example.com", subject="Invoice INV-1 posted", body="Thanks!")

    report = _dispatcher(store, clock, email=email).dispatch_once()

    assert report.claimed == 1
    assert report.sent == 1
    item = store.get(item_id)
    assert item.status == NotificationStatus.SENT
    assert item.attempts == 1
    assert item.sent_at >= item.created_at
    assert [m.subject for m in email.sent] == ["Invoice INV-1 posted"]


def test_missing_subject_falls_back_to_default(store, enqueue, clock):
    email = FakeSender()
    enqueue(recipient="customer@example.com")
    _dispatcher(store, clock, email=email).dispatch_once()
    assert email.sent[0].subject == "Notification"


def test_sms_goes_through_sms_sender(store, enqueue, clock):
    email, sms = FakeSender(), FakeSender()
    enqueue(channel="SMS", recipient="+15550100", body="PO-7 approved.")
    _dispatcher(store, clock, email=email, sms=sms).dispatch_once()
    assert email.sent == []
    assert [(m.to, m.body) for m in sms.sent] == [("+15550100", "PO-7 approved.")]


def test_three_failures_reach_failed_with_fixed_delay(store, enqueue, clock):
    t = clock()
    email = FakeSender(fail_for={"down@example.com": DeliveryError("421 service not available")})
    item_id = enqueue(recipient="down@example.com")
    d = _dispatcher(store, clock, email=email)

    assert d.dispatch_once().retrying == 1
    item = store.get(item_id)
    assert (item.status, item.attempts, item.next_attempt_at) == ("PENDING", 1, t + timedelta(seconds=5))

    # Not due yet.
    clock.advance(4)
    assert d.dispatch_once().claimed == 0

    clock.advance(1)
    assert d.dispatch_once().retrying == 1
    item = store.get(item_id)
    assert (item.status, item.attempts, item.next_attempt_at) == ("PENDING", 2, t + timedelta(seconds=10))

    clock.advance(5)
    assert d.dispatch_once().failed == 1
    item = store.get(item_id)
    assert item.status == NotificationStatus.FAILED
    assert item.attempts == 3
    assert item.next_attempt_at == FAR_FUTURE
    assert item.last_error == "421 service not available"

    clock.advance(3600)
    assert d.dispatch_once().claimed == 0
    assert store.get(item_id).attempts == 3


def test_one_bad_item_does_not_abort_the_batch(store, enqueue, clock):
    email = FakeSender(
        fail_for={
            "bad@example.com": DeliveryError("550 mailbox unavailable"),
            "crash@example.com": RuntimeError("socket exploded"),
        }
    )
    good_1 = enqueue(recipient="good1@example.com")
    bad = enqueue(recipient="bad@example.com")
    crash = enqueue(recipient="crash@example.com")
    good_2 = enqueue(recipient="good2@example.com")

    report = _dispatcher(store, clock, email=email).dispatch_once()

    assert (report.claimed, report.sent, report.retrying) == (4, 2, 2)
    assert store.get(good_1).status == NotificationStatus.SENT
    assert store.get(good_2).status == NotificationStatus.SENT
    assert store.get(bad).last_error == "550 mailbox unavailable"
    assert "RuntimeError: socket exploded" in store.get(crash).last_error


def test_parallel_sends_resolve_every_item(store, enqueue, clock):
    email = FakeSender(fail_for={"r3@example.com": DeliveryError("rejected")})
    ids = [enqueue(recipient=f"r{n}@example.com") for n in range(6)]

    report = _dispatcher(store, clock, email=email, send_concurrency=4).dispatch_once()

    assert (report.claimed, report.sent, report.retrying) == (6, 5, 1)
    statuses = {store.get(i).recipient: store.get(i).status for i in ids}
    assert statuses.pop("r3@example.com") == NotificationStatus.PENDING
    assert set(statuses.values()) == {NotificationStatus.SENT}


def test_disabled_dispatcher_leaves_items_pending(store, enqueue, clock):
    email = FakeSender()
    item_id = enqueue()

    d = _dispatcher(store, clock, email=email, enabled=False)
    for _ in range(3):
        assert d.dispatch_once().claimed == 0
        clock.advance(60)

    item = store.get(item_id)
    assert item.status == NotificationStatus.PENDING
    assert item.attempts == 0
    assert email.sent == []


def test_crashed_worker_items_are_recovered_after_lease(store, enqueue, clock):
    item_id = enqueue()
    store.claim_due_batch(clock(), 10)  # claimed by a worker that then died

    d = _dispatcher(store, clock, lease_seconds=300)
    assert d.dispatch_once().claimed == 0

    clock.advance(301)
    report = d.dispatch_once()
    assert (report.recovered, report.claimed, report.sent) == (1, 1, 1)
    item = store.get(item_id)
    assert item.status == NotificationStatus.SENT
    assert item.attempts == 2


def test_operator_retry_is_picked_up_next_cycle(store, enqueue, clock):
    email = FakeSender(fail_for={"x@example.com": DeliveryError("nope")})
    item_id = enqueue(recipient="x@example.com")
    d = _dispatcher(store, clock, email=email, max_attempts=1)
    assert d.dispatch_once().failed == 1

    store.retry_now(item_id, clock.advance(60))
    email.fail_for.clear()

    assert d.dispatch_once().sent == 1
    item = store.get(item_id)
    assert item.status == NotificationStatus.SENT
    assert item.attempts == 2


def test_storage_error_while_recording_is_contained(store, enqueue, clock, monkeypatch):
    item_id = enqueue()

    def broken(*args, **kwargs):
        raise RuntimeError("database connection lost")

    monkeypatch.setattr(store, "record_success", broken)
    report = _dispatcher(store, clock).dispatch_once()

    assert report.unrecorded == 1
    # Still PROCESSING; lease recovery will release it.
    assert store.get(item_id).status == NotificationStatus.PROCESSING


def test_run_forever_finishes_in_flight_batch_after_stop(store, enqueue, clock):
    stop = threading.Event()
    email = FakeSender(on_send=lambda _m: stop.set())
    a = enqueue(recipient="a@example.com")
    b = enqueue(recipient="b@example.com")

    _dispatcher(store, clock, email=email, poll_seconds=30).run_forever(stop)

    assert store.get(a).status == NotificationStatus.SENT
    assert store.get(b).status == NotificationStatus.SENT


def test_run_forever_survives_failed_cycles(store, clock, monkeypatch):
    stop = threading.Event()
    d = _dispatcher(store, clock, poll_seconds=0)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("database restarting")
        stop.set()

    monkeypatch.setattr(d, "dispatch_once", flaky)
    d.run_forever(stop)
    assert calls["n"] == 2


def test_run_forever_returns_immediately_when_already_stopped(store, clock, monkeypatch):
    stop = threading.Event()
    stop.set()
    d = _dispatcher(store, clock)
    monkeypatch.setattr(d, "dispatch_once", lambda: (_ for _ in ()).throw(AssertionError("should not run")))
    d.run_forever(stop)


def test_slow_batch_is_not_sent_twice_by_a_second_worker(store, enqueue, clock):
    sends = Counter()
    second = {}

    def slow_send(message):
        clock.advance(30)
        sends[message.to] += 1
        # Worker B polls while worker A is on its 11th send, well past A's claim time + lease.
        if sum(sends.values()) == 11 and "fired" not in second:
            second["fired"] = True
            second["report"] = second["worker"].dispatch_once()

    ids = [enqueue(recipient=f"r{n}@example.com") for n in range(12)]
    worker_a = _dispatcher(store, clock, email=FakeSender(on_send=slow_send), lease_seconds=300)
    second["worker"] = _dispatcher(store, clock, email=FakeSender(on_send=slow_send), lease_seconds=300)

    report_a = worker_a.dispatch_once()

    assert len(sends) == 12
    assert set(sends.values()) == {1}
    assert (report_a.claimed, report_a.sent, report_a.skipped) == (12, 11, 1)
    report_b = second["report"]
    assert (report_b.recovered, report_b.claimed, report_b.sent) == (1, 1, 1)
    assert {store.get(i).status for i in ids} == {NotificationStatus.SENT}


def test_item_released_before_its_turn_is_not_sent(store, enqueue, clock):
    email = FakeSender(
        on_send=lambda _m: store.recover_expired_leases(clock(), lease=timedelta(0), max_attempts=5)
    )
    first = enqueue(recipient="first@example.com")
    second = enqueue(recipient="second@example.com")

    report = _dispatcher(store, clock, email=email).dispatch_once()

    assert [m.to for m in email.sent] == ["first@example.com"]
    assert (report.claimed, report.sent, report.skipped) == (2, 1, 1)
    assert store.get(first).status == NotificationStatus.SENT
    item = store.get(second)
    assert item.status == NotificationStatus.PENDING
    assert item.attempts == 1
