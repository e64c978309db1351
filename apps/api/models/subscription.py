"""Subscription model holding the materialized credit balance."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELED = "canceled"
SUBSCRIPTION_STATUSES = (SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELED)


class Subscription(Base):
    """One billing state row per account. Never deleted."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_subscriptions_credit_balance_non_negative"),
        CheckConstraint("videos_used_this_period >= 0", name="ck_subscriptions_videos_used_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, unique=True, index=True)
    plan_id = Column(String, ForeignKey("plans.id"), nullable=False, index=True)
    external_subscription_id = Column(String, nullable=True, unique=True, index=True)
    external_customer_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default=SUBSCRIPTION_ACTIVE)
    credit_balance = Column(Integer, nullable=False, default=0)
    videos_used_this_period = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    account = relationship("Account", back_populates="subscription")
    plan = relationship("Plan")
