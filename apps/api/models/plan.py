"""Plan catalog model."""

from sqlalchemy import Boolean, Column, Integer, Numeric, String

from database import Base


class Plan(Base):
    """Static subscription plan; read-only at request time."""

    __tablename__ = "plans"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    monthly_price = Column(Numeric(10, 2), nullable=False, default=0)
    monthly_credits = Column(Integer, nullable=False, default=0)
    allow_video = Column(Boolean, nullable=False, default=False)
    video_monthly_limit = Column(Integer, nullable=False, default=0)
    stripe_price_id = Column(String, unique=True, nullable=True, index=True)
    active = Column(Boolean, nullable=False, default=True)
