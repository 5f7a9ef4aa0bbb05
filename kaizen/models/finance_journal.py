from sqlalchemy import Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from kaizen.db.base_class import Base
from kaizen.models.finance_category import EntryType


class FinanceJournal(Base):
    """A single income or expense entry."""

    __tablename__ = "finance_journals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("finance_categories.id"), nullable=False, index=True)

    # Type is copied from the category at write time
    type = Column(Enum(EntryType), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    date = Column(Date, nullable=False, index=True)
    payment_method = Column(String(50))  # e.g., "cash", "credit_card", "bank_transfer"
    location = Column(String(255))
    is_recurring = Column(Boolean, default=False, nullable=False)
    receipt_url = Column(String(500))

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="journals")
    category = relationship("FinanceCategory", back_populates="journals")
