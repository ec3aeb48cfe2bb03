import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from deskbot.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(Text, ForeignKey("conversations.id"), nullable=False, index=True)
    role = Column(Text, nullable=False)  # user, bot, staff
    content = Column(Text, nullable=False)
    content_kind = Column(Text, nullable=False, default="text")
    correlation_id = Column(Text)
    outbox_id = Column(Text)
    message_metadata = Column("metadata", JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
