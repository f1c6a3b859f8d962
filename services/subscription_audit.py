"""Audit trail helpers for subscription lifecycle changes."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.subscription_event import SubscriptionEvent

logger = logging.getLogger(__name__)


def record_subscription_event(
    session: Session,
    *,
    tenant_id: str,
    event_type: str,
    from_plan: Optional[str] = None,
    to_plan: Optional[str] = None,
    status: Optional[str] = None,
    message: Optional[str] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> SubscriptionEvent:
    """Stage an audit row on ``session``. The caller owns the commit."""
    event = SubscriptionEvent(
        tenant_id=tenant_id,
        event_type=event_type,
        from_plan=from_plan,
        to_plan=to_plan,
        status=status,
        message=message,
        context=dict(context or {}),
    )
    session.add(event)
    logger.info("Subscription event %s tenant=%s %s->%s", event_type, tenant_id, from_plan, to_plan)
    return event


def list_subscription_events(session: Session, tenant_id: str, *, limit: int = 50) -> List[SubscriptionEvent]:
    stmt = (
        select(SubscriptionEvent)
        .where(SubscriptionEvent.tenant_id == tenant_id)
        .order_by(SubscriptionEvent.created_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


__all__ = ["list_subscription_events", "record_subscription_event"]
