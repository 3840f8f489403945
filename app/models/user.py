from sqlalchemy import Column, BigInteger, Integer, String

from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class User(Base):
    """Identity anchor for an opaque client-held session token."""

    __tablename__ = "users"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    session_token = Column(String(255), unique=True, index=True, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
