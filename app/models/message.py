from sqlalchemy import Column, BigInteger, Integer, ForeignKey, Text, String, JSON, Index, CheckConstraint

from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    conversation_id = Column(BigInteger, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    images = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="valid_role"),
        Index("ix_messages_conversation_id_created_at", "conversation_id", "created_at"),
    )
