from sqlalchemy import JSON, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from deskbot.database import Base


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    id = Column(Text, primary_key=True)  # idempotency key
    conversation_id = Column(Text, nullable=False, index=True)
    recipient = Column(Text, nullable=False)
    payload_kind = Column(Text, nullable=False, default="text")  # text, interactive
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    status = Column(Text, nullable=False, default="pending", index=True)
    tries = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True))
    error = Column(Text)
    remote_id = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sent_at = Column(DateTime(timezone=True))
