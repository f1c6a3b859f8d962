from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class SubscriptionEvent(Base):
    """Audit trail of plan changes, trial conversions and webhook syncs."""

    __tablename__ = "subscription_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    from_plan = Column(String(32), nullable=True)
    to_plan = Column(String(32), nullable=True)
    status = Column(String(32), nullable=True)
    message = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
