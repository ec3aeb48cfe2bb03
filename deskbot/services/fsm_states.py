from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class FSMState(str, Enum):
    ROOT = "ROOT"
    IDENTIFY = "IDENTIFY"
    CLIENT_MENU = "CLIENT_MENU"
    CLIENT_STATUS = "CLIENT_STATUS"
    INVOICE_COLLECT = "INVOICE_COLLECT"
    INVOICE_CONFIRM = "INVOICE_CONFIRM"
    INVOICE_EDIT_FIELD = "INVOICE_EDIT_FIELD"
    SALES_COLLECT = "SALES_COLLECT"
    MEETING = "MEETING"
    PROSPECT_MENU = "PROSPECT_MENU"
    SIGNUP_MENU = "SIGNUP_MENU"
    SIGNUP_COLLECT = "SIGNUP_COLLECT"
    PLAN_MENU = "PLAN_MENU"
    PLAN_COLLECT = "PLAN_COLLECT"
    INQUIRY_STATUS = "INQUIRY_STATUS"
    HANDOFF = "HANDOFF"
    FINALIZE = "FINALIZE"


INITIAL_STATE = FSMState.ROOT

COLLECT_STATES = frozenset(
    {
        FSMState.INVOICE_COLLECT,
        FSMState.SALES_COLLECT,
        FSMState.SIGNUP_COLLECT,
        FSMState.PLAN_COLLECT,
    }
)

# States where an attachment is part of the flow and never ends it.
MEDIA_STATES = COLLECT_STATES | {FSMState.HANDOFF}

# Idle-like states where a payment question can interrupt.
PAYMENT_STATES = frozenset(
    {
        FSMState.ROOT,
        FSMState.CLIENT_MENU,
        FSMState.CLIENT_STATUS,
        FSMState.PROSPECT_MENU,
        FSMState.MEETING,
        FSMState.FINALIZE,
    }
)

HANDOFF_STATES = frozenset(
    {
        FSMState.ROOT,
        FSMState.IDENTIFY,
        FSMState.CLIENT_MENU,
        FSMState.CLIENT_STATUS,
        FSMState.INVOICE_COLLECT,
        FSMState.INVOICE_CONFIRM,
        FSMState.SALES_COLLECT,
        FSMState.MEETING,
        FSMState.PROSPECT_MENU,
        FSMState.SIGNUP_MENU,
        FSMState.SIGNUP_COLLECT,
        FSMState.PLAN_MENU,
        FSMState.PLAN_COLLECT,
        FSMState.INQUIRY_STATUS,
        FSMState.FINALIZE,
    }
)

# Not absorbing: the next inbound event goes back to a menu.
TERMINAL_STATES = frozenset({FSMState.CLIENT_STATUS, FSMState.MEETING, FSMState.FINALIZE})

MENU_STATES = frozenset(
    {
        FSMState.ROOT,
        FSMState.CLIENT_MENU,
        FSMState.PROSPECT_MENU,
        FSMState.SIGNUP_MENU,
        FSMState.PLAN_MENU,
    }
)


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"
    MENU_SELECTION = "menu-selection"

    @property
    def is_attachment(self) -> bool:
        return self in {ContentKind.IMAGE, ContentKind.DOCUMENT, ContentKind.VIDEO, ContentKind.AUDIO}


@dataclass
class InboundEvent:
    conversation_id: str
    text: str = ""
    content_kind: ContentKind = ContentKind.TEXT
    correlation_id: Optional[str] = None
    contact_name: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_attachment(self) -> bool:
        return self.content_kind.is_attachment


@dataclass
class Reply:
    kind: str = "text"  # text, interactive
    text: str = ""
    interactive: Optional[dict[str, Any]] = None

    @classmethod
    def of(cls, text: str) -> "Reply":
        return cls(kind="text", text=text)

    @classmethod
    def menu(cls, interactive: dict[str, Any]) -> "Reply":
        body = interactive.get("body", {}).get("text", "")
        return cls(kind="interactive", text=body, interactive=interactive)

    @property
    def is_empty(self) -> bool:
        if self.kind == "interactive":
            return not self.interactive
        return not (self.text or "").strip()

    def to_payload(self) -> dict[str, Any]:
        if self.kind == "interactive":
            return {"type": "interactive", "interactive": self.interactive}
        return {"type": "text", "text": {"body": self.text}}


class EffectKind(str, Enum):
    PERSIST_FIELD = "persist_field"
    NOTIFY_STAFF = "notify_staff"
    START_HANDOFF = "start_handoff"
    END_HANDOFF = "end_handoff"


@dataclass
class EffectRequest:
    kind: EffectKind
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def persist(cls, field_name: str, value: Any) -> "EffectRequest":
        return cls(EffectKind.PERSIST_FIELD, {"field": field_name, "value": value})

    @classmethod
    def notify(cls, staff: str, text: str, reason: str) -> "EffectRequest":
        return cls(EffectKind.NOTIFY_STAFF, {"staff": staff, "text": text, "reason": reason})


@dataclass
class Transition:
    new_state: FSMState
    replies: list[Reply] = field(default_factory=list)
    effects: list[EffectRequest] = field(default_factory=list)
