from app.messaging.models.conversation import Conversation
from app.messaging.models.conversation_participant import (
    ConversationParticipant,
    ParticipantStatus,
)
from app.messaging.models.message import Message, MessageType
from app.messaging.models.read_receipt import MessageReadReceipt

__all__ = [
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageReadReceipt",
    "MessageType",
    "ParticipantStatus",
]
