"""Dedup record for payment processor webhook events."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


class ProcessedWebhookEvent(Base):
    """Existence of a row means the event was already applied."""

    __tablename__ = "processed_webhook_events"

    external_event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
