"""Generation job model for long-running video synthesis."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class GenerationJob(Base):
    """Provider-side video job tracked until it reaches a terminal state."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    feature_type = Column(String, nullable=False, default="video")
    state = Column(String, nullable=False, default="submitted", index=True)
    provider_job_handle = Column(String, nullable=True, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    artifact_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    account = relationship("Account", back_populates="generation_jobs")
