"""Per-IP hourly quota window for public storefront requests."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from database import Base


class PublicQuotaWindow(Base):
    """One row per client IP; ``used`` counts accepted requests since ``window_started_at``."""

    __tablename__ = "public_quota_windows"
    __table_args__ = (CheckConstraint("used >= 0", name="ck_public_quota_windows_used_non_negative"),)

    client_ip = Column(String, primary_key=True)
    window_started_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Integer, nullable=False, default=0)
