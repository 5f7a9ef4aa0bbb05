from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
import enum
from kaizen.db.base_class import Base


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class Token(Base):
    """Server-side record of an issued token.

    The row is the token's validity: deleting it revokes the token even while
    its signature and embedded expiry still check out.
    """

    __tablename__ = "tokens"

    id = Column(String(100), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(TokenType), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="tokens")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) > self.expires_at
