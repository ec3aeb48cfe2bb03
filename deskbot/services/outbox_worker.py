"""Background delivery loop for the outbox."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.services.alert_service import alert_error
from deskbot.services.outbox_service import (
    OutboxStatus,
    claim_due_outbox,
    mark_outbox_failure,
    mark_outbox_sent,
    release_stuck_sending,
)
from deskbot.services.whatsapp_transport import SendResult, WhatsAppTransport

logger = get_logger("outbox_worker")


class OutboxWorker:
    def __init__(self, session_factory: Callable[[], Session], transport: WhatsAppTransport, settings):
        self.session_factory = session_factory
        self.transport = transport
        self.poll_interval = max(float(settings.outbox_poll_interval_seconds), 0.1)
        self.batch_size = settings.outbox_batch_size
        self.send_timeout = settings.outbox_send_timeout_seconds
        self.backoff_base = settings.outbox_backoff_base_seconds
        self.backoff_cap = settings.outbox_backoff_cap_seconds
        self.max_tries: Optional[int] = settings.max_tries
        self.stuck_after = settings.outbox_stuck_sending_seconds
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict[str, int]:
        """Release stuck entries, claim a batch and deliver it concurrently."""
        results = {"released": 0, "claimed": 0, "sent": 0, "retry_scheduled": 0, "failed": 0}

        db = self.session_factory()
        try:
            results["released"] = release_stuck_sending(db, older_than_seconds=self.stuck_after)
            entries = claim_due_outbox(db, limit=self.batch_size)
            jobs = [(entry.id, entry.recipient, entry.payload) for entry in entries]
        finally:
            db.close()

        results["claimed"] = len(jobs)
        if not jobs:
            return results

        outcomes = await asyncio.gather(*(self._deliver(*job) for job in jobs))
        for outcome in outcomes:
            results[outcome] += 1
        return results

    async def _attempt(self, entry_id: str, recipient: str, payload: dict) -> SendResult:
        try:
            return await asyncio.wait_for(
                self.transport.send(recipient, payload, idempotency_key=entry_id),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            return SendResult.failure(f"timeout after {self.send_timeout}s")
        except Exception as e:
            return SendResult.failure(f"{type(e).__name__}: {e}")

    async def _deliver(self, entry_id: str, recipient: str, payload: dict) -> str:
        result = await self._attempt(entry_id, recipient, payload)

        db = self.session_factory()
        try:
            if result.ok:
                mark_outbox_sent(db, entry_id, remote_id=result.remote_id)
                logger.info(
                    "Outbox sent",
                    extra={"context": {"outbox_id": entry_id, "remote_id": result.remote_id}},
                )
                return "sent"

            entry = mark_outbox_failure(
                db,
                entry_id,
                error=result.error or "unknown error",
                backoff_base_seconds=self.backoff_base,
                backoff_cap_seconds=self.backoff_cap,
                max_tries=self.max_tries,
            )
            context = {
                "outbox_id": entry_id,
                "recipient": mask_phone(recipient),
                "tries": entry.tries,
                "error": entry.error,
                "next_attempt_at": entry.next_attempt_at,
            }
            if entry.status == OutboxStatus.FAILED.value:
                logger.error("Outbox delivery failed permanently", extra={"context": context})
                await asyncio.to_thread(alert_error, "Outbox delivery failed permanently", context)
                return "failed"
            logger.warning("Outbox delivery failed, retry scheduled", extra={"context": context})
            return "retry_scheduled"
        finally:
            db.close()

    async def run_forever(self) -> None:
        logger.info("Outbox worker started", extra={"context": {"interval": self.poll_interval}})
        while True:
            try:
                results = await self.run_once()
                if results["claimed"] or results["released"]:
                    logger.info("Outbox worker processed", extra={"context": results})
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Outbox worker loop failed", extra={"context": {"error": str(exc)}})
            try:
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
        logger.info("Outbox worker stopped")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
