"""Audit log of public storefront generation requests."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func
import uuid

from database import Base


class PublicTryOnLog(Base):
    """One row per accepted unauthenticated storefront request."""

    __tablename__ = "public_tryon_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    client_ip = Column(String, nullable=False, index=True)
    store_slug = Column(String, nullable=True)
    feature_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
