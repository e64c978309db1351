"""Account model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Account(Base):
    """Account mirrored from the identity provider, optionally owning a public store."""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=True, index=True)
    store_slug = Column(String, unique=True, nullable=True, index=True)
    store_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    subscription = relationship("Subscription", back_populates="account", uselist=False)
    credit_transactions = relationship("CreditTransaction", back_populates="account")
    generation_jobs = relationship("GenerationJob", back_populates="account")
