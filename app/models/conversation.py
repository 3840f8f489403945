from sqlalchemy import Column, BigInteger, Integer, ForeignKey, String, Index, CheckConstraint

from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow

DEFAULT_CONVERSATION_TITLE = "New Chat"


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False, default=DEFAULT_CONVERSATION_TITLE)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("updated_at >= created_at", name="updated_after_created"),
        Index("ix_conversations_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_conversations_updated_at", "updated_at"),
    )
