"""Inbound orchestration: dedup, per-conversation lock, engine, dispatch."""

import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.services.content import get_text
from deskbot.services.conversation_service import get_or_create_conversation, save_message
from deskbot.services.dedup_cache import DedupCache, build_inbound_event_id
from deskbot.services.dispatcher import ReplyDispatcher
from deskbot.services.fsm_engine import FSMEngine
from deskbot.services.fsm_states import InboundEvent, Reply
from deskbot.services.outbox_service import enqueue_outbox_message
from deskbot.services.session_store import SessionStore

logger = get_logger("inbound_service")


@dataclass
class InboundResult:
    event_id: str
    duplicate: bool = False
    state: Optional[str] = None
    outbox_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None


class InboundService:
    def __init__(
        self,
        dedup: DedupCache,
        sessions: SessionStore,
        engine: FSMEngine,
        dispatcher: ReplyDispatcher,
        session_factory: Callable[[], Session],
    ):
        self.dedup = dedup
        self.sessions = sessions
        self.engine = engine
        self.dispatcher = dispatcher
        self.session_factory = session_factory

    async def handle(self, event: InboundEvent, event_id: Optional[str] = None) -> InboundResult:
        event_id = event_id or build_inbound_event_id(event.correlation_id, event.conversation_id)
        log_context = {"event_id": event_id, "conversation": mask_phone(event.conversation_id)}

        if not await self.dedup.claim(event_id):
            logger.info("Duplicate inbound event skipped", extra={"context": log_context})
            return InboundResult(event_id=event_id, duplicate=True)

        async with self.sessions.acquire(event.conversation_id) as session:
            db = self.session_factory()
            try:
                conversation = get_or_create_conversation(db, event.conversation_id, event.contact_name)
                save_message(
                    db,
                    event.conversation_id,
                    "user",
                    event.text or f"[{event.content_kind.value}]",
                    content_kind=event.content_kind.value,
                    correlation_id=event.correlation_id,
                )
                db.commit()

                if event.contact_name:
                    session.data["contact_name"] = event.contact_name
                if event.correlation_id:
                    session.data["last_correlation_id"] = event.correlation_id

                transition = self.engine.transition(session, event)
                session.state = transition.new_state
                outbox_ids = await self.dispatcher.dispatch(db, conversation, transition, event)
                return InboundResult(event_id=event_id, state=session.state.value, outbox_ids=outbox_ids)
            except Exception as e:
                db.rollback()
                logger.error(
                    "Inbound processing failed",
                    extra={"context": {**log_context, "error": str(e)}},
                    exc_info=True,
                )
                self._send_generic_error(db, event.conversation_id)
                state = getattr(session.state, "value", session.state)
                return InboundResult(event_id=event_id, state=state, error=str(e))
            finally:
                db.close()

    @staticmethod
    def _send_generic_error(db: Session, conversation_id: str) -> None:
        reply = Reply.of(get_text("generic_error"))
        try:
            enqueue_outbox_message(
                db,
                conversation_id=conversation_id,
                recipient=conversation_id,
                payload=reply.to_payload(),
                payload_kind=reply.kind,
                idempotency_key=str(uuid.uuid4()),
            )
        except Exception as e:
            db.rollback()
            logger.error(
                "Generic error reply could not be queued",
                extra={"context": {"conversation": mask_phone(conversation_id), "error": str(e)}},
            )
