from sqlalchemy import Boolean, Column, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from deskbot.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Text, primary_key=True)  # E.164 phone of the end user
    contact_name = Column(Text)
    cuit = Column(Text)
    client_name = Column(Text)
    is_client = Column(Boolean, nullable=False, default=False)
    handoff_status = Column(Text, nullable=False, default="bot_active")  # bot_active, handoff_active, handoff_closed
    handoff_reason = Column(Text)
    handoff_at = Column(DateTime(timezone=True))
    last_message_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    messages = relationship("Message", back_populates="conversation")
