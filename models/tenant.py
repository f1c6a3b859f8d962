from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, String, func

from database import Base


class Tenant(Base):
    """A clinic account and the billing fields the subscription engine reads."""

    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    plan_type = Column(String(32), nullable=True)
    plan_name = Column(String(120), nullable=True)
    subscription_status = Column(String(32), nullable=True, index=True)
    is_trial_period = Column(Boolean, nullable=False, default=False, server_default="0")
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    subscription_ends_at = Column(DateTime(timezone=True), nullable=True)
    billing_interval = Column(String(16), nullable=True)
    stripe_customer_id = Column(String(120), nullable=True, index=True)
    stripe_subscription_id = Column(String(120), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
