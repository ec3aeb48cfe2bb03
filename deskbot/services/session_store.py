"""In-process registry of live conversation sessions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Optional

from deskbot.logging_config import get_logger, mask_phone
from deskbot.services.dedup_cache import Clock, utc_now
from deskbot.services.fsm_states import INITIAL_STATE, FSMState

logger = get_logger("session_store")

SessionSeeder = Callable[[str], Optional[dict]]


@dataclass
class Session:
    id: str
    state: FSMState = INITIAL_STATE
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)
    last_ack_at: dict[FSMState, datetime] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value if isinstance(self.state, FSMState) else str(self.state),
            "data": dict(self.data),
            "createdAt": self.created_at.isoformat(),
            "lastActivityAt": self.last_activity_at.isoformat(),
            "lastAckAt": {
                (state.value if isinstance(state, FSMState) else str(state)): at.isoformat()
                for state, at in self.last_ack_at.items()
            },
        }


class SessionStore:
    """Sessions keyed by conversation id, serialized per id through ``acquire``.

    ``seeder`` returns persisted fields (e.g. the identified CUIT) to copy into
    ``session.data`` when a session is created; session state itself is lossy.
    """

    def __init__(
        self,
        idle_minutes: float = 120,
        clock: Optional[Clock] = None,
        seeder: Optional[SessionSeeder] = None,
    ):
        self.idle_threshold = timedelta(minutes=idle_minutes)
        self._clock = clock or utc_now
        self._seeder = seeder
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_use: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def get(self, conversation_id: str) -> Optional[Session]:
        return self._sessions.get(conversation_id)

    def get_or_create(self, conversation_id: str) -> tuple[Session, bool]:
        session = self._sessions.get(conversation_id)
        if session is not None:
            return session, False

        now = self._clock()
        session = Session(id=conversation_id, state=INITIAL_STATE, created_at=now, last_activity_at=now)
        if self._seeder is not None:
            try:
                seed = self._seeder(conversation_id) or {}
            except Exception as e:
                logger.error(
                    "Session seed failed",
                    extra={"context": {"conversation": mask_phone(conversation_id), "error": str(e)}},
                )
                seed = {}
            session.data.update({key: value for key, value in seed.items() if value is not None})

        self._sessions[conversation_id] = session
        logger.info("Session created", extra={"context": {"conversation": mask_phone(conversation_id)}})
        return session, True

    def touch(self, session: Session) -> None:
        now = self._clock()
        if now > session.last_activity_at:
            session.last_activity_at = now

    def reset(self, conversation_id: str, state: FSMState = INITIAL_STATE) -> Session:
        session, _ = self.get_or_create(conversation_id)
        session.state = state
        session.last_ack_at.clear()
        self.touch(session)
        return session

    def is_locked(self, conversation_id: str) -> bool:
        """True while a task holds or waits for this conversation."""
        return self._in_use.get(conversation_id, 0) > 0

    @asynccontextmanager
    async def acquire(self, conversation_id: str) -> AsyncIterator[Session]:
        """Exclusive access to one conversation's session."""
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._in_use[conversation_id] = self._in_use.get(conversation_id, 0) + 1
        try:
            async with lock:
                session, _ = self.get_or_create(conversation_id)
                try:
                    yield session
                finally:
                    self.touch(session)
        finally:
            remaining = self._in_use[conversation_id] - 1
            if remaining:
                self._in_use[conversation_id] = remaining
            else:
                del self._in_use[conversation_id]

    def sweep(self) -> list[str]:
        """Evict idle sessions; sessions in use are skipped."""
        now = self._clock()
        evicted = []
        for conversation_id, session in list(self._sessions.items()):
            if now - session.last_activity_at <= self.idle_threshold:
                continue
            if self.is_locked(conversation_id):
                continue
            del self._sessions[conversation_id]
            self._locks.pop(conversation_id, None)
            evicted.append(conversation_id)

        for conversation_id in list(self._locks):
            if conversation_id not in self._sessions and not self.is_locked(conversation_id):
                del self._locks[conversation_id]

        if evicted:
            logger.info(
                "Idle sessions evicted",
                extra={"context": {"evicted": len(evicted), "remaining": len(self._sessions)}},
            )
        return evicted
