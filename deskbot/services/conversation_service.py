from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from deskbot.models import Conversation, Message
from deskbot.services.state_machine import HandoffStatus

# Fields the flow engine may write through to the conversation row.
PERSISTABLE_FIELDS = frozenset({"cuit", "client_name", "is_client", "contact_name"})


def get_conversation(db: Session, conversation_id: str) -> Optional[Conversation]:
    return db.get(Conversation, conversation_id)


def get_or_create_conversation(
    db: Session,
    conversation_id: str,
    contact_name: Optional[str] = None,
) -> Conversation:
    """Find the conversation row for this phone or create it."""
    conversation = db.get(Conversation, conversation_id)
    now = datetime.now(timezone.utc)

    if not conversation:
        conversation = Conversation(
            id=conversation_id,
            contact_name=contact_name,
            is_client=False,
            handoff_status=HandoffStatus.BOT_ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        db.add(conversation)
        db.flush()
    elif contact_name and conversation.contact_name != contact_name:
        conversation.contact_name = contact_name
        conversation.updated_at = now
        db.flush()

    return conversation


def update_conversation_fields(db: Session, conversation_id: str, **fields: Any) -> Conversation:
    """Write identification fields through to the persistent store."""
    unknown = set(fields) - PERSISTABLE_FIELDS
    if unknown:
        raise ValueError(f"Not persistable: {sorted(unknown)}")

    conversation = get_or_create_conversation(db, conversation_id)
    for name, value in fields.items():
        setattr(conversation, name, value)
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return conversation


def session_seed(db: Session, conversation_id: str) -> dict:
    """Persisted fields copied into a fresh in-memory session."""
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return {}
    return {
        "cuit": conversation.cuit,
        "client_name": conversation.client_name,
        "is_client": conversation.is_client or None,
        "contact_name": conversation.contact_name,
    }


def save_message(
    db: Session,
    conversation_id: str,
    role: str,
    content: str,
    *,
    content_kind: str = "text",
    correlation_id: Optional[str] = None,
    outbox_id: Optional[str] = None,
    message_metadata: Optional[dict] = None,
) -> Message:
    """Save a conversation-visible message."""
    now = datetime.now(timezone.utc)
    message = Message(
        conversation_id=conversation_id,
        role=role,
        content=content,
        content_kind=content_kind,
        correlation_id=correlation_id,
        outbox_id=outbox_id,
        message_metadata=message_metadata or {},
        created_at=now,
    )
    db.add(message)
    if role == "user":
        conversation = db.get(Conversation, conversation_id)
        if conversation is not None:
            conversation.last_message_at = now
    db.flush()
    return message


def list_messages(db: Session, conversation_id: str, limit: int = 50) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
