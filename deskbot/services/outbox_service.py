"""Durable outbound queue.

Entry lifecycle: ``pending -> sending -> sent``; a failed attempt goes back to
``pending`` with ``tries + 1`` and a capped linear backoff. ``failed`` is only
reached when a retry ceiling is configured.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import or_, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.models import OutboxMessage

logger = get_logger("outbox_service")


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class OutboxEntryNotFound(LookupError):
    pass


class OutboxEntryBusy(RuntimeError):
    """The entry is being delivered right now."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_backoff(tries: int, base_seconds: float, cap_seconds: float) -> float:
    return min(base_seconds * max(tries, 1), cap_seconds)


def enqueue_outbox_message(
    db: Session,
    *,
    conversation_id: str,
    recipient: str,
    payload: dict[str, Any],
    payload_kind: str = "text",
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Queue a delivery and commit. Idempotent on ``idempotency_key``.

    An existing entry is returned untouched unless it ended ``failed``, in
    which case it is queued again from scratch.
    """
    now = now or _utcnow()
    entry_id = idempotency_key or str(uuid.uuid4())

    existing = db.get(OutboxMessage, entry_id)
    if existing is not None:
        if existing.status == OutboxStatus.FAILED.value:
            existing.status = OutboxStatus.PENDING.value
            existing.tries = 0
            existing.error = None
            existing.next_attempt_at = None
            existing.updated_at = now
            db.commit()
            logger.info("Outbox entry revived", extra={"context": {"outbox_id": entry_id}})
        return existing.id

    db.add(
        OutboxMessage(
            id=entry_id,
            conversation_id=conversation_id,
            recipient=recipient,
            payload_kind=payload_kind,
            payload=payload,
            status=OutboxStatus.PENDING.value,
            tries=0,
            created_at=now,
            updated_at=now,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # Another caller inserted the same key first.
        db.rollback()
        logger.info("Outbox enqueue deduplicated", extra={"context": {"outbox_id": entry_id}})
        return entry_id

    logger.info(
        "Outbox entry queued",
        extra={
            "context": {
                "outbox_id": entry_id,
                "conversation": mask_phone(conversation_id),
                "payload_kind": payload_kind,
            }
        },
    )
    return entry_id


def claim_due_outbox(db: Session, *, limit: int = 20, now: Optional[datetime] = None) -> list[OutboxMessage]:
    """Move up to ``limit`` due entries to ``sending`` and return them, oldest first."""
    now = now or _utcnow()

    if db.get_bind().dialect.name == "postgresql":
        claimed_ids = (
            db.execute(
                text(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM outbox_messages
                        WHERE status = 'pending'
                          AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
                        ORDER BY created_at
                        LIMIT :limit
                        FOR UPDATE SKIP LOCKED
                    )
                    UPDATE outbox_messages
                    SET status = 'sending',
                        updated_at = :now
                    FROM cte
                    WHERE outbox_messages.id = cte.id
                    RETURNING outbox_messages.id
                    """
                ),
                {"limit": limit, "now": now},
            )
            .scalars()
            .all()
        )
    else:
        candidates = (
            db.query(OutboxMessage.id)
            .filter(
                OutboxMessage.status == OutboxStatus.PENDING.value,
                or_(OutboxMessage.next_attempt_at.is_(None), OutboxMessage.next_attempt_at <= now),
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
            .all()
        )
        claimed_ids = []
        for (entry_id,) in candidates:
            # Conditional flip: a concurrent claimer that got there first leaves rowcount at 0.
            result = db.execute(
                update(OutboxMessage)
                .where(OutboxMessage.id == entry_id, OutboxMessage.status == OutboxStatus.PENDING.value)
                .values(status=OutboxStatus.SENDING.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed_ids.append(entry_id)
    db.commit()

    if not claimed_ids:
        return []
    return (
        db.query(OutboxMessage)
        .populate_existing()
        .filter(OutboxMessage.id.in_(claimed_ids))
        .order_by(OutboxMessage.created_at)
        .all()
    )


def mark_outbox_sent(
    db: Session,
    entry_id: str,
    *,
    remote_id: Optional[str],
    now: Optional[datetime] = None,
) -> OutboxMessage:
    now = now or _utcnow()
    entry = db.get(OutboxMessage, entry_id)
    if entry is None:
        raise OutboxEntryNotFound(entry_id)
    entry.status = OutboxStatus.SENT.value
    entry.remote_id = remote_id
    entry.sent_at = now
    entry.error = None
    entry.next_attempt_at = None
    entry.updated_at = now
    db.commit()
    return entry


def mark_outbox_failure(
    db: Session,
    entry_id: str,
    *,
    error: str,
    backoff_base_seconds: float = 30,
    backoff_cap_seconds: float = 600,
    max_tries: Optional[int] = None,
    now: Optional[datetime] = None,
) -> OutboxMessage:
    """Record a failed attempt: back to ``pending`` with backoff, or ``failed`` at the ceiling."""
    now = now or _utcnow()
    entry = db.get(OutboxMessage, entry_id)
    if entry is None:
        raise OutboxEntryNotFound(entry_id)

    entry.tries = (entry.tries or 0) + 1
    entry.error = (error or "unknown error")[:1000]
    entry.updated_at = now
    if max_tries and entry.tries >= max_tries:
        entry.status = OutboxStatus.FAILED.value
        entry.next_attempt_at = None
    else:
        entry.status = OutboxStatus.PENDING.value
        delay = compute_backoff(entry.tries, backoff_base_seconds, backoff_cap_seconds)
        entry.next_attempt_at = now + timedelta(seconds=delay)
    db.commit()
    return entry


def release_stuck_sending(
    db: Session,
    *,
    older_than_seconds: float,
    now: Optional[datetime] = None,
) -> int:
    """Return entries stranded in ``sending`` (e.g. by a crash) to ``pending``. Tries are unchanged."""
    now = now or _utcnow()
    cutoff = now - timedelta(seconds=older_than_seconds)
    result = db.execute(
        update(OutboxMessage)
        .where(OutboxMessage.status == OutboxStatus.SENDING.value, OutboxMessage.updated_at < cutoff)
        .values(status=OutboxStatus.PENDING.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning("Released stuck outbox entries", extra={"context": {"count": result.rowcount}})
    return result.rowcount or 0


def resend_outbox_message(db: Session, entry_id: str, *, now: Optional[datetime] = None) -> OutboxMessage:
    now = now or _utcnow()
    entry = db.get(OutboxMessage, entry_id)
    if entry is None:
        raise OutboxEntryNotFound(entry_id)
    if entry.status == OutboxStatus.SENDING.value:
        raise OutboxEntryBusy(entry_id)

    entry.status = OutboxStatus.PENDING.value
    entry.next_attempt_at = None
    entry.error = None
    entry.updated_at = now
    db.commit()
    logger.info("Outbox entry queued for resend", extra={"context": {"outbox_id": entry_id}})
    return entry


def get_outbox_message(db: Session, entry_id: str) -> Optional[OutboxMessage]:
    return db.get(OutboxMessage, entry_id)


def list_outbox_messages(
    db: Session,
    *,
    status: Optional[str] = None,
    conversation_id: Optional[str] = None,
    limit: int = 50,
) -> list[OutboxMessage]:
    query = db.query(OutboxMessage)
    if status:
        query = query.filter(OutboxMessage.status == status)
    if conversation_id:
        query = query.filter(OutboxMessage.conversation_id == conversation_id)
    return query.order_by(OutboxMessage.created_at.desc()).limit(limit).all()


def record_delivery_status(
    db: Session,
    remote_id: str,
    status: str,
    *,
    errors: Optional[list[dict[str, Any]]] = None,
) -> Optional[OutboxMessage]:
    """Log a provider delivery receipt (delivered, read, failed) against the sent entry."""
    entry = db.query(OutboxMessage).filter(OutboxMessage.remote_id == remote_id).first()
    context = {
        "remote_id": remote_id,
        "status": status,
        "outbox_id": entry.id if entry else None,
        "recipient": mask_phone(entry.recipient) if entry else None,
    }
    if status == "failed":
        logger.warning("Delivery receipt: failed", extra={"context": {**context, "errors": errors or []}})
    elif entry is None:
        logger.info("Delivery receipt for unknown message", extra={"context": context})
    else:
        logger.info("Delivery receipt", extra={"context": context})
    return entry
