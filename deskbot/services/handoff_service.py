"""Hand a conversation to human staff and back."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.models import Conversation
from deskbot.services import state_machine
from deskbot.services.content import get_text
from deskbot.services.conversation_service import get_or_create_conversation, save_message
from deskbot.services.fsm_states import FSMState, Reply
from deskbot.services.notification_service import notify_staff
from deskbot.services.outbox_service import enqueue_outbox_message
from deskbot.services.session_store import SessionStore
from deskbot.services.state_machine import HandoffStatus, InvalidTransitionError

logger = get_logger("handoff_service")


class ConversationNotFound(LookupError):
    pass


def start_handoff(
    db: Session,
    conversation_id: str,
    *,
    reason: str,
    staff_text: str,
    staff_phones: dict[str, str],
) -> Optional[str]:
    """Mark the conversation as handed off and notify the handoff staff phone.

    A conversation already in handoff only gets the notification.
    """
    conversation = get_or_create_conversation(db, conversation_id)
    current = HandoffStatus(conversation.handoff_status or HandoffStatus.BOT_ACTIVE.value)

    try:
        new_status = state_machine.start_handoff(current)
    except InvalidTransitionError:
        logger.info(
            "Handoff already active",
            extra={"context": {"conversation": mask_phone(conversation_id)}},
        )
    else:
        now = datetime.now(timezone.utc)
        conversation.handoff_status = new_status.value
        conversation.handoff_reason = reason
        conversation.handoff_at = now
        conversation.updated_at = now
        db.flush()
        logger.info(
            "Handoff started",
            extra={"context": {"conversation": mask_phone(conversation_id), "reason": reason}},
        )

    return notify_staff(db, "handoff", staff_text, conversation_id=conversation_id, staff_phones=staff_phones)


def end_handoff(db: Session, conversation_id: str, *, reason: str) -> Optional[HandoffStatus]:
    """Give the conversation back to the bot after the user left the handoff.

    Returns the new status, or None when the bot was already in charge.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return None

    current = HandoffStatus(conversation.handoff_status or HandoffStatus.BOT_ACTIVE.value)
    try:
        new_status = state_machine.reopen(current)
    except InvalidTransitionError:
        return None

    conversation.handoff_status = new_status.value
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "Handoff ended by user",
        extra={"context": {"conversation": mask_phone(conversation_id), "reason": reason}},
    )
    return new_status


async def close_handoff(db: Session, conversation_id: str, *, session_store: SessionStore) -> Conversation:
    """Close a handoff: tell the user, and move a live session still in HANDOFF to FINALIZE.

    Raises ConversationNotFound or InvalidTransitionError.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise ConversationNotFound(conversation_id)

    current = HandoffStatus(conversation.handoff_status or HandoffStatus.BOT_ACTIVE.value)
    new_status = state_machine.close_handoff(current)

    now = datetime.now(timezone.utc)
    conversation.handoff_status = new_status.value
    conversation.updated_at = now

    reply = Reply.of(get_text("handoff_closed"))
    outbox_id = enqueue_outbox_message(
        db,
        conversation_id=conversation_id,
        recipient=conversation_id,
        payload=reply.to_payload(),
        payload_kind=reply.kind,
        idempotency_key=str(uuid.uuid4()),
    )
    save_message(db, conversation_id, "bot", reply.text, outbox_id=outbox_id)
    db.commit()

    async with session_store.acquire(conversation_id) as session:
        if session.state == FSMState.HANDOFF:
            session.state = FSMState.FINALIZE
            session.data.pop("return_to", None)
            session.last_ack_at.clear()

    logger.info(
        "Handoff closed",
        extra={"context": {"conversation": mask_phone(conversation_id), "outbox_id": outbox_id}},
    )
    return conversation
