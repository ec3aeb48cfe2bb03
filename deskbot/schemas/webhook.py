from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from deskbot.services.fsm_states import ContentKind


class InboundEventRequest(BaseModel):
    """Inbound event in the transport-neutral shape used by ``POST /inbound``."""

    conversation_id: str = Field(validation_alias=AliasChoices("conversationId", "conversation_id"))
    text: str = ""
    content_kind: ContentKind = Field(
        default=ContentKind.TEXT,
        validation_alias=AliasChoices("contentKind", "content_kind"),
    )
    correlation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("correlationId", "correlation_id"),
    )
    contact_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("contactName", "contact_name"),
    )
    message_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("messageId", "message_id"),
    )


class InboundEventResponse(BaseModel):
    success: bool
    event_id: str
    duplicate: bool = False
    state: Optional[str] = None
    outbox_ids: list[str] = []
    error: Optional[str] = None


# Meta WhatsApp Cloud API webhook payload (only the parts we read).


class MetaReply(BaseModel):
    id: str
    title: Optional[str] = None


class MetaInteractive(BaseModel):
    type: Optional[str] = None
    list_reply: Optional[MetaReply] = None
    button_reply: Optional[MetaReply] = None


class MetaText(BaseModel):
    body: str = ""


class MetaMedia(BaseModel):
    id: Optional[str] = None
    caption: Optional[str] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None


class MetaMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = Field(alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[MetaText] = None
    interactive: Optional[MetaInteractive] = None
    button: Optional[dict[str, Any]] = None
    image: Optional[MetaMedia] = None
    document: Optional[MetaMedia] = None
    video: Optional[MetaMedia] = None
    audio: Optional[MetaMedia] = None


class MetaProfile(BaseModel):
    name: Optional[str] = None


class MetaContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[MetaProfile] = None


class MetaStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    recipient_id: Optional[str] = None
    timestamp: Optional[str] = None
    errors: list[dict[str, Any]] = []


class MetaValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contacts: list[MetaContact] = []
    messages: list[MetaMessage] = []
    statuses: list[MetaStatus] = []


class MetaChange(BaseModel):
    field: Optional[str] = None
    value: MetaValue = MetaValue()


class MetaEntry(BaseModel):
    id: Optional[str] = None
    changes: list[MetaChange] = []


class MetaWebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[MetaEntry] = []


class WebhookResponse(BaseModel):
    success: bool
    processed: int = 0
    duplicates: int = 0
    statuses: int = 0
