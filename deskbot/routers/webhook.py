from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from deskbot.config import settings
from deskbot.database import get_db
from deskbot.dependencies import get_inbound_service
from deskbot.logging_config import get_logger, mask_phone
from deskbot.schemas.webhook import (
    InboundEventRequest,
    InboundEventResponse,
    MetaMessage,
    MetaWebhookPayload,
    WebhookResponse,
)
from deskbot.services.dedup_cache import build_inbound_event_id
from deskbot.services.fsm_states import ContentKind, InboundEvent
from deskbot.services.inbound_service import InboundService
from deskbot.services.outbox_service import record_delivery_status

logger = get_logger("webhook")

router = APIRouter()

MEDIA_KINDS = {
    "image": ContentKind.IMAGE,
    "document": ContentKind.DOCUMENT,
    "video": ContentKind.VIDEO,
    "audio": ContentKind.AUDIO,
    "voice": ContentKind.AUDIO,
    "sticker": ContentKind.IMAGE,
}


def meta_message_to_event(message: MetaMessage, contact_name: Optional[str] = None) -> Optional[InboundEvent]:
    """Map one Cloud API message to an inbound event; unsupported types give None."""
    common = {
        "conversation_id": message.sender,
        "correlation_id": message.id,
        "contact_name": contact_name,
    }
    if message.type == "text" and message.text is not None:
        return InboundEvent(text=message.text.body, **common)

    if message.type == "interactive" and message.interactive is not None:
        selected = message.interactive.list_reply or message.interactive.button_reply
        if selected is None:
            return None
        return InboundEvent(text=selected.id, content_kind=ContentKind.MENU_SELECTION, **common)

    if message.type == "button" and message.button:
        text = message.button.get("payload") or message.button.get("text") or ""
        return InboundEvent(text=text, content_kind=ContentKind.MENU_SELECTION, **common)

    kind = MEDIA_KINDS.get(message.type)
    if kind is not None:
        media = getattr(message, message.type, None)
        caption = getattr(media, "caption", None) or ""
        return InboundEvent(text=caption, content_kind=kind, **common)

    return None


@router.get("/webhook/whatsapp", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
        return challenge or ""
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
async def handle_whatsapp_webhook(
    payload: MetaWebhookPayload,
    service: InboundService = Depends(get_inbound_service),
    db: Session = Depends(get_db),
):
    processed = 0
    duplicates = 0
    statuses = 0
    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            names = {
                contact.wa_id: contact.profile.name
                for contact in value.contacts
                if contact.wa_id and contact.profile
            }
            for message in value.messages:
                event = meta_message_to_event(message, names.get(message.sender))
                if event is None:
                    logger.info(
                        "Unsupported message type ignored",
                        extra={"context": {"type": message.type, "sender": mask_phone(message.sender)}},
                    )
                    continue
                event_id = build_inbound_event_id(message.id, message.sender, message.timestamp)
                result = await service.handle(event, event_id)
                if result.duplicate:
                    duplicates += 1
                else:
                    processed += 1
            for status in value.statuses:
                record_delivery_status(db, status.id, status.status, errors=status.errors)
                statuses += 1

    return WebhookResponse(success=True, processed=processed, duplicates=duplicates, statuses=statuses)


@router.post("/inbound", response_model=InboundEventResponse)
async def handle_inbound(
    request: InboundEventRequest,
    service: InboundService = Depends(get_inbound_service),
):
    """Feed one inbound event directly (simulator and integration tests)."""
    event = InboundEvent(
        conversation_id=request.conversation_id,
        text=request.text,
        content_kind=request.content_kind,
        correlation_id=request.correlation_id,
        contact_name=request.contact_name,
    )
    event_id = build_inbound_event_id(request.message_id or request.correlation_id, request.conversation_id)
    result = await service.handle(event, event_id)
    return InboundEventResponse(
        success=result.error is None,
        event_id=result.event_id,
        duplicate=result.duplicate,
        state=result.state,
        outbox_ids=result.outbox_ids,
        error=result.error,
    )
