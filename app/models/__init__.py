"""Database models."""

# Import all models here to ensure they're recognized by SQLAlchemy
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.user import User

__all__ = [
    "User",
    "Conversation",
    "Message",
]
