from typing import Optional

from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.services.outbox_service import enqueue_outbox_message

logger = get_logger("notification_service")


def resolve_staff_phone(role: str, staff_phones: dict[str, str]) -> Optional[str]:
    """Phone for a staff role, falling back to the ``default`` entry."""
    return staff_phones.get(role) or staff_phones.get("default")


def notify_staff(
    db: Session,
    role: str,
    text: str,
    *,
    conversation_id: str,
    staff_phones: dict[str, str],
) -> Optional[str]:
    """Queue a staff notification through the outbox. Returns the outbox id."""
    phone = resolve_staff_phone(role, staff_phones)
    if not phone:
        logger.warning(
            "No staff phone configured",
            extra={"context": {"role": role, "conversation": mask_phone(conversation_id)}},
        )
        return None

    outbox_id = enqueue_outbox_message(
        db,
        conversation_id=conversation_id,
        recipient=phone,
        payload={"type": "text", "text": {"body": text}},
        payload_kind="staff",
    )
    logger.info(
        "Staff notified",
        extra={"context": {"role": role, "staff": mask_phone(phone), "outbox_id": outbox_id}},
    )
    return outbox_id
