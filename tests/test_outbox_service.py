from datetime import datetime, timedelta, timezone

import pytest

from deskbot.models import OutboxMessage
from deskbot.services.outbox_service import (
    OutboxEntryBusy,
    OutboxEntryNotFound,
    OutboxStatus,
    claim_due_outbox,
    coerce_utc,
    compute_backoff,
    enqueue_outbox_message,
    get_outbox_message,
    list_outbox_messages,
    mark_outbox_failure,
    mark_outbox_sent,
    record_delivery_status,
    release_stuck_sending,
    resend_outbox_message,
)

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PAYLOAD = {"type": "text", "text": {"body": "hola"}}


def _enqueue(db, key=None, now=T0, conversation_id="549111"):
    return enqueue_outbox_message(
        db,
        conversation_id=conversation_id,
        recipient=conversation_id,
        payload=PAYLOAD,
        idempotency_key=key,
        now=now,
    )


class TestComputeBackoff:
    def test_linear_and_capped(self):
        assert compute_backoff(1, 30, 600) == 30
        assert compute_backoff(3, 30, 600) == 90
        assert compute_backoff(50, 30, 600) == 600

    def test_zero_tries_uses_one_step(self):
        assert compute_backoff(0, 30, 600) == 30


class TestEnqueue:
    def test_creates_pending_entry(self, db):
        entry_id = _enqueue(db)

        entry = get_outbox_message(db, entry_id)
        assert entry.status == OutboxStatus.PENDING.value
        assert entry.tries == 0
        assert entry.payload == PAYLOAD

    def test_same_key_is_idempotent(self, db):
        first = _enqueue(db, key="reply-1")
        second = _enqueue(db, key="reply-1")

        assert first == second == "reply-1"
        assert db.query(OutboxMessage).count() == 1

    def test_failed_entry_is_revived(self, db):
        _enqueue(db, key="reply-2")
        entry = mark_outbox_failure(db, "reply-2", error="boom", max_tries=1, now=T0)
        assert entry.status == OutboxStatus.FAILED.value

        _enqueue(db, key="reply-2")

        entry = get_outbox_message(db, "reply-2")
        assert entry.status == OutboxStatus.PENDING.value
        assert entry.tries == 0
        assert entry.error is None


class TestClaim:
    def test_claims_due_entries_oldest_first(self, db):
        _enqueue(db, key="b", now=T0 + timedelta(seconds=2))
        _enqueue(db, key="a", now=T0 + timedelta(seconds=1))

        claimed = claim_due_outbox(db, limit=10, now=T0 + timedelta(seconds=5))

        assert [entry.id for entry in claimed] == ["a", "b"]
        assert all(entry.status == OutboxStatus.SENDING.value for entry in claimed)

    def test_second_claim_gets_nothing(self, db):
        _enqueue(db, key="a")

        assert len(claim_due_outbox(db, now=T0)) == 1
        assert claim_due_outbox(db, now=T0) == []

    def test_respects_next_attempt_at(self, db):
        _enqueue(db, key="a")
        claim_due_outbox(db, now=T0)
        mark_outbox_failure(db, "a", error="timeout", backoff_base_seconds=30, now=T0)

        assert claim_due_outbox(db, now=T0 + timedelta(seconds=10)) == []
        assert [e.id for e in claim_due_outbox(db, now=T0 + timedelta(seconds=31))] == ["a"]

    def test_limit(self, db):
        for i in range(5):
            _enqueue(db, key=f"k{i}", now=T0 + timedelta(seconds=i))

        assert len(claim_due_outbox(db, limit=3, now=T0 + timedelta(minutes=1))) == 3


class TestFailures:
    def test_three_failures_back_off_strictly_increasing(self, db):
        _enqueue(db, key="a")
        attempts = []
        now = T0
        for _ in range(3):
            (entry,) = claim_due_outbox(db, now=now)
            entry = mark_outbox_failure(db, entry.id, error="network", backoff_base_seconds=30, now=now)
            attempts.append(coerce_utc(entry.next_attempt_at))
            now = coerce_utc(entry.next_attempt_at) + timedelta(seconds=1)

        entry = get_outbox_message(db, "a")
        assert entry.tries == 3
        assert entry.status == OutboxStatus.PENDING.value
        assert entry.error == "network"
        assert attempts[0] < attempts[1] < attempts[2]

    def test_no_ceiling_never_fails(self, db):
        _enqueue(db, key="a")
        for _ in range(20):
            entry = mark_outbox_failure(db, "a", error="x", now=T0)
        assert entry.status == OutboxStatus.PENDING.value
        assert entry.tries == 20
        assert coerce_utc(entry.next_attempt_at) == T0 + timedelta(seconds=600)

    def test_ceiling_marks_failed(self, db):
        _enqueue(db, key="a")
        mark_outbox_failure(db, "a", error="x", max_tries=2, now=T0)
        entry = mark_outbox_failure(db, "a", error="x", max_tries=2, now=T0)

        assert entry.status == OutboxStatus.FAILED.value
        assert entry.next_attempt_at is None
        assert claim_due_outbox(db, now=T0 + timedelta(hours=1)) == []

    def test_unknown_entry(self, db):
        with pytest.raises(OutboxEntryNotFound):
            mark_outbox_failure(db, "missing", error="x")


class TestSentAndRecovery:
    def test_mark_sent(self, db):
        _enqueue(db, key="a")
        claim_due_outbox(db, now=T0)

        entry = mark_outbox_sent(db, "a", remote_id="wamid.1", now=T0)

        assert entry.status == OutboxStatus.SENT.value
        assert entry.remote_id == "wamid.1"
        assert coerce_utc(entry.sent_at) == T0

    def test_release_stuck_sending(self, db):
        _enqueue(db, key="a")
        claim_due_outbox(db, now=T0)

        assert release_stuck_sending(db, older_than_seconds=300, now=T0 + timedelta(seconds=60)) == 0
        assert release_stuck_sending(db, older_than_seconds=300, now=T0 + timedelta(seconds=301)) == 1

        db.expire_all()
        entry = get_outbox_message(db, "a")
        assert entry.status == OutboxStatus.PENDING.value
        assert entry.tries == 0


class TestResend:
    def test_resend_failed_entry(self, db):
        _enqueue(db, key="a")
        mark_outbox_failure(db, "a", error="x", max_tries=1, now=T0)

        entry = resend_outbox_message(db, "a", now=T0)

        assert entry.status == OutboxStatus.PENDING.value
        assert entry.next_attempt_at is None

    def test_resend_while_sending_is_rejected(self, db):
        _enqueue(db, key="a")
        claim_due_outbox(db, now=T0)

        with pytest.raises(OutboxEntryBusy):
            resend_outbox_message(db, "a")

    def test_resend_missing(self, db):
        with pytest.raises(OutboxEntryNotFound):
            resend_outbox_message(db, "missing")


def test_list_filters(db):
    _enqueue(db, key="a", conversation_id="549111")
    _enqueue(db, key="b", conversation_id="549222")
    mark_outbox_failure(db, "b", error="x", max_tries=1, now=T0)

    assert [e.id for e in list_outbox_messages(db, conversation_id="549111")] == ["a"]
    assert [e.id for e in list_outbox_messages(db, status="failed")] == ["b"]


def test_delivery_status_matches_sent_entry(db):
    _enqueue(db, key="a")
    entry = db.get(OutboxMessage, "a")
    entry.remote_id = "wamid.out.1"
    db.commit()

    assert record_delivery_status(db, "wamid.out.1", "delivered").id == "a"
    assert record_delivery_status(db, "wamid.other", "read") is None
