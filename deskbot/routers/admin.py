"""Operator endpoints: outbox inspection and manual resend, handoff close, session peek."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from deskbot.config import settings
from deskbot.database import get_db
from deskbot.dependencies import get_session_store, get_worker
from deskbot.schemas.outbox import HandoffCloseResponse, OutboxEntryOut, OutboxProcessResponse
from deskbot.services import handoff_service
from deskbot.services.conversation_service import list_messages
from deskbot.services.outbox_service import (
    OutboxEntryBusy,
    OutboxEntryNotFound,
    OutboxStatus,
    get_outbox_message,
    list_outbox_messages,
    resend_outbox_message,
)
from deskbot.services.outbox_worker import OutboxWorker
from deskbot.services.session_store import SessionStore
from deskbot.services.state_machine import InvalidTransitionError

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


# === OUTBOX ===


@router.post("/outbox/process", response_model=OutboxProcessResponse, dependencies=[Depends(_require_admin_token)])
async def process_outbox(worker: OutboxWorker = Depends(get_worker)):
    """Run one worker pass now."""
    return await worker.run_once()


@router.get("/outbox", response_model=list[OutboxEntryOut], dependencies=[Depends(_require_admin_token)])
def list_outbox(
    status: Optional[str] = None,
    conversation_id: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    if status is not None and status not in {s.value for s in OutboxStatus}:
        raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
    safe_limit = max(1, min(int(limit), 500))
    return list_outbox_messages(db, status=status, conversation_id=conversation_id, limit=safe_limit)


@router.get("/outbox/{entry_id}", response_model=OutboxEntryOut, dependencies=[Depends(_require_admin_token)])
def get_outbox(entry_id: str, db: Session = Depends(get_db)):
    entry = get_outbox_message(db, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Outbox entry not found")
    return entry


@router.post("/outbox/{entry_id}/resend", response_model=OutboxEntryOut, dependencies=[Depends(_require_admin_token)])
def resend_outbox(entry_id: str, db: Session = Depends(get_db)):
    try:
        return resend_outbox_message(db, entry_id)
    except OutboxEntryNotFound:
        raise HTTPException(status_code=404, detail="Outbox entry not found")
    except OutboxEntryBusy:
        raise HTTPException(status_code=409, detail="Outbox entry is being sent")


# === CONVERSATIONS ===


@router.post(
    "/conversations/{conversation_id}/handoff/close",
    response_model=HandoffCloseResponse,
    dependencies=[Depends(_require_admin_token)],
)
async def close_handoff(
    conversation_id: str,
    db: Session = Depends(get_db),
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        conversation = await handoff_service.close_handoff(db, conversation_id, session_store=session_store)
    except handoff_service.ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return HandoffCloseResponse(
        success=True,
        conversation_id=conversation.id,
        handoff_status=conversation.handoff_status,
    )


@router.get("/conversations/{conversation_id}/messages", dependencies=[Depends(_require_admin_token)])
def get_messages(conversation_id: str, limit: int = 50, db: Session = Depends(get_db)):
    messages = list_messages(db, conversation_id, limit=max(1, min(int(limit), 200)))
    return [
        {
            "id": message.id,
            "role": message.role,
            "content": message.content,
            "contentKind": message.content_kind,
            "outboxId": message.outbox_id,
            "createdAt": message.created_at,
        }
        for message in messages
    ]


@router.get("/sessions/{conversation_id}", dependencies=[Depends(_require_admin_token)])
def get_session(conversation_id: str, session_store: SessionStore = Depends(get_session_store)):
    session = session_store.get(conversation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No live session")
    return {**session.to_dict(), "locked": session_store.is_locked(conversation_id)}
