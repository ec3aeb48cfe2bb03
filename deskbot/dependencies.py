"""Process-wide service singletons, exposed as FastAPI dependencies."""

from functools import lru_cache

from deskbot.config import settings
from deskbot.database import SessionLocal
from deskbot.services.client_directory import SqlClientDirectory
from deskbot.services.conversation_service import session_seed
from deskbot.services.dedup_cache import DedupCache, build_dedup_cache
from deskbot.services.dispatcher import ReplyDispatcher
from deskbot.services.fsm_engine import FSMEngine
from deskbot.services.inbound_service import InboundService
from deskbot.services.outbox_worker import OutboxWorker
from deskbot.services.rewrite_service import build_rewriter
from deskbot.services.session_store import SessionStore
from deskbot.services.whatsapp_transport import WhatsAppTransport, build_transport


def _seed_from_db(conversation_id: str) -> dict:
    db = SessionLocal()
    try:
        return session_seed(db, conversation_id)
    finally:
        db.close()


@lru_cache
def get_dedup_cache() -> DedupCache:
    return build_dedup_cache(settings)


@lru_cache
def get_session_store() -> SessionStore:
    return SessionStore(idle_minutes=settings.session_idle_minutes, seeder=_seed_from_db)


@lru_cache
def get_engine() -> FSMEngine:
    return FSMEngine(
        SqlClientDirectory(SessionLocal),
        ack_cooldown_seconds=settings.ack_cooldown_seconds,
        operator_allowlist=settings.operator_ids,
    )


@lru_cache
def get_transport() -> WhatsAppTransport:
    return build_transport(settings)


@lru_cache
def get_worker() -> OutboxWorker:
    return OutboxWorker(SessionLocal, get_transport(), settings)


@lru_cache
def get_dispatcher() -> ReplyDispatcher:
    return ReplyDispatcher(build_rewriter(settings), settings.staff_phone_map)


@lru_cache
def get_inbound_service() -> InboundService:
    return InboundService(
        dedup=get_dedup_cache(),
        sessions=get_session_store(),
        engine=get_engine(),
        dispatcher=get_dispatcher(),
        session_factory=SessionLocal,
    )
