"""Turns a Transition into queued outbox entries and applied side effects."""

import asyncio
import uuid

from sqlalchemy.orm import Session

from deskbot.logging_config import get_logger, mask_phone
from deskbot.models import Conversation
from deskbot.services import handoff_service
from deskbot.services.conversation_service import save_message, update_conversation_fields
from deskbot.services.fsm_states import EffectKind, EffectRequest, InboundEvent, Reply, Transition
from deskbot.services.notification_service import notify_staff
from deskbot.services.outbox_service import enqueue_outbox_message
from deskbot.services.rewrite_service import RewriteService

logger = get_logger("dispatcher")


class ReplyDispatcher:
    def __init__(self, rewriter: RewriteService, staff_phones: dict[str, str]):
        self.rewriter = rewriter
        self.staff_phones = staff_phones

    async def dispatch(
        self,
        db: Session,
        conversation: Conversation,
        transition: Transition,
        event: InboundEvent,
    ) -> list[str]:
        """Queue replies in order, then apply effects. Returns the queued outbox ids.

        Replies are queued before any effect runs, so a failing effect never
        drops a reply.
        """
        outbox_ids = []
        for reply in transition.replies:
            if reply.is_empty:
                continue
            reply = await self._maybe_rewrite(reply, transition)
            outbox_id = enqueue_outbox_message(
                db,
                conversation_id=conversation.id,
                recipient=conversation.id,
                payload=reply.to_payload(),
                payload_kind=reply.kind,
                idempotency_key=str(uuid.uuid4()),
            )
            save_message(
                db,
                conversation.id,
                "bot",
                reply.text,
                content_kind=reply.kind,
                correlation_id=event.correlation_id,
                outbox_id=outbox_id,
            )
            outbox_ids.append(outbox_id)
        db.commit()

        for effect in transition.effects:
            try:
                self._apply_effect(db, conversation.id, effect)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(
                    "Effect failed",
                    extra={
                        "context": {
                            "conversation": mask_phone(conversation.id),
                            "effect": effect.kind.value,
                            "error": str(e),
                        }
                    },
                )
        return outbox_ids

    async def _maybe_rewrite(self, reply: Reply, transition: Transition) -> Reply:
        if not self.rewriter.can_rewrite(reply):
            return reply
        try:
            rewritten = await asyncio.to_thread(
                self.rewriter.rewrite, reply.text, {"state": transition.new_state.value}
            )
        except Exception as e:
            logger.warning("Rewrite raised", extra={"context": {"error": str(e)}})
            return reply
        return Reply.of(rewritten) if rewritten else reply

    def _apply_effect(self, db: Session, conversation_id: str, effect: EffectRequest) -> None:
        data = effect.data
        if effect.kind == EffectKind.PERSIST_FIELD:
            update_conversation_fields(db, conversation_id, **{data["field"]: data["value"]})
        elif effect.kind == EffectKind.NOTIFY_STAFF:
            notify_staff(
                db,
                data["staff"],
                data["text"],
                conversation_id=conversation_id,
                staff_phones=self.staff_phones,
            )
        elif effect.kind == EffectKind.START_HANDOFF:
            handoff_service.start_handoff(
                db,
                conversation_id,
                reason=data.get("reason", "user_request"),
                staff_text=data["text"],
                staff_phones=self.staff_phones,
            )
        elif effect.kind == EffectKind.END_HANDOFF:
            handoff_service.end_handoff(db, conversation_id, reason=data.get("reason", "user_exit"))
        else:
            raise ValueError(f"Unknown effect {effect.kind}")
