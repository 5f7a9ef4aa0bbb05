from sqlalchemy import Boolean, Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from kaizen.db.base_class import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tokens = relationship("Token", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    api_keys = relationship("APIKey", back_populates="user", cascade="all, delete-orphan")
    categories = relationship("FinanceCategory", back_populates="user", cascade="all, delete-orphan")
    journals = relationship("FinanceJournal", back_populates="user", cascade="all, delete-orphan")
