from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from kaizen.db.base_class import Base


class EntryType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class FinanceCategory(Base):
    __tablename__ = "finance_categories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(Enum(EntryType), default=EntryType.EXPENSE, nullable=False, index=True)
    description = Column(String(500))
    color = Column(String(7), default="#000000")
    icon = Column(String(50))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="categories")
    journals = relationship("FinanceJournal", back_populates="category")
