from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class OutboxEntryOut(BaseModel):
    """Outbox entry as read by the dashboard and the manual-resend tool."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    status: str
    tries: int
    next_attempt_at: Optional[datetime] = Field(default=None, serialization_alias="nextAttemptAt")
    conversation_id: str = Field(serialization_alias="conversationId")
    recipient: str
    payload_kind: str = Field(serialization_alias="payloadKind")
    payload: dict[str, Any]
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    sent_at: Optional[datetime] = Field(default=None, serialization_alias="sentAt")
    remote_id: Optional[str] = Field(default=None, serialization_alias="remoteId")


class OutboxProcessResponse(BaseModel):
    released: int = 0
    claimed: int = 0
    sent: int = 0
    retry_scheduled: int = 0
    failed: int = 0


class HandoffCloseResponse(BaseModel):
    success: bool
    conversation_id: str
    handoff_status: str
