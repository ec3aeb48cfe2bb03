from deskbot.models.client import Client
from deskbot.models.conversation import Conversation
from deskbot.models.message import Message
from deskbot.models.outbox_message import OutboxMessage

__all__ = [
    "Client",
    "Conversation",
    "Message",
    "OutboxMessage",
]
