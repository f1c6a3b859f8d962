"""Server-side subscription actions backed by the tenant table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.env import env_int, env_str
from core.plan_constants import DEFAULT_SUBSCRIPTION_URL, PlanType, SubscriptionState
from models.tenant import Tenant
from services.entitlements import FEATURE_KEYS, resolve_entitlements
from services.pricing import get_plan_display_name
from services.subscription_audit import record_subscription_event
from services.subscription_status import DerivedStatus, compute_status, from_epoch, parse_timestamp

logger = logging.getLogger(__name__)

LOGIN_URL = "/api/auth/login"
NO_PLAN_REASON = "no_plan"

_ACTIVE_PROVIDER_STATES = {"active", "trialing"}
_LAPSED_PROVIDER_STATES = {
    "past_due": SubscriptionState.PAST_DUE,
    "unpaid": SubscriptionState.PAST_DUE,
    "canceled": SubscriptionState.CANCELED,
}


@dataclass(slots=True)
class SubscriptionStatusPayload:
    """Status snapshot served to clients."""

    is_active: bool
    plan_type: Optional[str]
    plan_name: Optional[str]
    status: str
    renewal_date: Optional[datetime]
    is_trial_period: bool
    trial_ends_at: Optional[datetime]
    days_remaining: Optional[int]


@dataclass(slots=True)
class ActivePlanCheck:
    allowed: bool
    redirect_to: Optional[str] = None


def subscription_settings_url() -> str:
    return env_str("SUBSCRIPTION_SETTINGS_URL", DEFAULT_SUBSCRIPTION_URL) or DEFAULT_SUBSCRIPTION_URL


def get_tenant(session: Session, tenant_id: Optional[str]) -> Optional[Tenant]:
    if not tenant_id:
        return None
    return session.get(Tenant, tenant_id)


def build_status_payload(tenant: Tenant, derived: DerivedStatus) -> SubscriptionStatusPayload:
    return SubscriptionStatusPayload(
        is_active=derived.is_active,
        plan_type=tenant.plan_type,
        plan_name=tenant.plan_name or get_plan_display_name(derived.plan_type),
        status=derived.status,
        renewal_date=parse_timestamp(tenant.subscription_ends_at),
        is_trial_period=derived.is_trial_period,
        trial_ends_at=parse_timestamp(tenant.trial_ends_at),
        days_remaining=derived.days_remaining if derived.is_trial_period else None,
    )


def get_subscription_status(
    session: Session,
    tenant_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[SubscriptionStatusPayload]:
    """Status for ``tenant_id``; ``None`` when unauthenticated, missing, or on a database error."""
    if not tenant_id:
        return None
    try:
        tenant = get_tenant(session, tenant_id)
    except SQLAlchemyError:
        logger.exception("Failed to load subscription status for tenant=%s", tenant_id)
        return None
    if tenant is None:
        return None
    return build_status_payload(tenant, compute_status(tenant, now=now))


def check_feature_access(
    session: Session,
    tenant_id: Optional[str],
    feature_key: str,
    *,
    now: Optional[datetime] = None,
) -> bool:
    if not tenant_id or feature_key not in FEATURE_KEYS:
        return False
    try:
        tenant = get_tenant(session, tenant_id)
    except SQLAlchemyError:
        logger.exception("Feature check failed for tenant=%s feature=%s", tenant_id, feature_key)
        return False
    if tenant is None:
        return False
    derived = compute_status(tenant, now=now)
    return resolve_entitlements(tenant.plan_type, derived).allows(feature_key)


def require_active_plan(
    session: Session,
    tenant_id: Optional[str],
    *,
    authenticated: bool = True,
    now: Optional[datetime] = None,
) -> ActivePlanCheck:
    """Server-side gate. Unlike the client helper this one is authoritative."""
    if not authenticated:
        return ActivePlanCheck(allowed=False, redirect_to=LOGIN_URL)
    status = get_subscription_status(session, tenant_id, now=now)
    if status is None or not status.is_active:
        return ActivePlanCheck(
            allowed=False,
            redirect_to=f"{subscription_settings_url()}&reason={NO_PLAN_REASON}",
        )
    return ActivePlanCheck(allowed=True)


def start_trial(
    session: Session,
    *,
    tenant_id: str,
    name: str,
    plan_type: PlanType = PlanType.PROFESIONAL,
    now: Optional[datetime] = None,
) -> Tenant:
    """Create a tenant at signup with a fresh trial window."""
    started = now or datetime.now(timezone.utc)
    duration = env_int("TRIAL_PERIOD_DAYS", 30, minimum=1)
    tenant = Tenant(
        id=tenant_id,
        name=name,
        plan_type=plan_type.value,
        plan_name=get_plan_display_name(plan_type),
        subscription_status=SubscriptionState.TRIALING.value,
        is_trial_period=True,
        trial_ends_at=started + timedelta(days=duration),
    )
    session.add(tenant)
    record_subscription_event(
        session,
        tenant_id=tenant_id,
        event_type="trial.started",
        to_plan=plan_type.value,
        status=SubscriptionState.TRIALING.value,
        context={"durationDays": duration},
    )
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to start trial for tenant=%s", tenant_id)
        raise
    return tenant


def _find_tenant_for_subscription(session: Session, subscription: Mapping[str, Any]) -> Optional[Tenant]:
    metadata = subscription.get("metadata") or {}
    tenant_id = metadata.get("tenantId") or metadata.get("tenant_id")
    if tenant_id:
        tenant = session.get(Tenant, tenant_id)
        if tenant is not None:
            return tenant
    subscription_id = subscription.get("id")
    if subscription_id:
        tenant = session.execute(
            select(Tenant).where(Tenant.stripe_subscription_id == subscription_id)
        ).scalar_one_or_none()
        if tenant is not None:
            return tenant
    customer_id = subscription.get("customer")
    if customer_id:
        return session.execute(select(Tenant).where(Tenant.stripe_customer_id == customer_id)).scalar_one_or_none()
    return None


def apply_subscription_change(session: Session, subscription: Mapping[str, Any]) -> Optional[Tenant]:
    """Mirror a provider subscription object onto the tenant row."""
    tenant = _find_tenant_for_subscription(session, subscription)
    if tenant is None:
        logger.warning("No tenant matches provider subscription %s", subscription.get("id"))
        return None

    provider_status = str(subscription.get("status") or "").lower()
    previous_plan = tenant.plan_type
    metadata = subscription.get("metadata") or {}

    if provider_status in _ACTIVE_PROVIDER_STATES:
        plan = PlanType.parse(metadata.get("planType")) or PlanType.parse(tenant.plan_type)
        tenant.stripe_subscription_id = subscription.get("id") or tenant.stripe_subscription_id
        tenant.stripe_customer_id = subscription.get("customer") or tenant.stripe_customer_id
        if plan is not None:
            tenant.plan_type = plan.value
            tenant.plan_name = get_plan_display_name(plan)
        tenant.subscription_status = provider_status.upper()
        tenant.subscription_ends_at = from_epoch(subscription.get("current_period_end"))
        tenant.is_trial_period = provider_status == "trialing"
        if provider_status == "trialing":
            tenant.trial_ends_at = from_epoch(subscription.get("trial_end")) or tenant.trial_ends_at
    elif provider_status in _LAPSED_PROVIDER_STATES:
        state = _LAPSED_PROVIDER_STATES[provider_status]
        tenant.subscription_status = state.value
        tenant.is_trial_period = False
        if state is SubscriptionState.CANCELED:
            tenant.stripe_subscription_id = None
            tenant.plan_name = None
    else:
        logger.info("Ignoring provider subscription status %r for tenant=%s", provider_status, tenant.id)
        return tenant

    record_subscription_event(
        session,
        tenant_id=tenant.id,
        event_type="webhook.subscription_sync",
        from_plan=previous_plan,
        to_plan=tenant.plan_type,
        status=tenant.subscription_status,
        context={"subscriptionId": subscription.get("id"), "providerStatus": provider_status},
    )
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to persist subscription sync for tenant=%s", tenant.id)
        raise
    return tenant


def apply_checkout_completed(session: Session, checkout_session: Mapping[str, Any]) -> Optional[Tenant]:
    """Link the provider customer/subscription created by a completed checkout to its tenant."""
    metadata = checkout_session.get("metadata") or {}
    tenant_id = metadata.get("tenantId") or metadata.get("tenant_id")
    tenant = session.get(Tenant, tenant_id) if tenant_id else None
    if tenant is None:
        logger.warning("Checkout session %s has no matching tenant", checkout_session.get("id"))
        return None
    tenant.stripe_customer_id = checkout_session.get("customer") or tenant.stripe_customer_id
    tenant.stripe_subscription_id = checkout_session.get("subscription") or tenant.stripe_subscription_id
    interval = metadata.get("billingInterval")
    if interval:
        tenant.billing_interval = interval
    record_subscription_event(
        session,
        tenant_id=tenant.id,
        event_type="checkout.completed",
        to_plan=metadata.get("planType"),
        status=tenant.subscription_status,
        context={"checkoutSessionId": checkout_session.get("id")},
    )
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to persist checkout completion for tenant=%s", tenant.id)
        raise
    return tenant


def handle_billing_event(session: Session, event: Mapping[str, Any]) -> Dict[str, Any]:
    """Dispatch a verified billing-provider webhook event."""
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    if event_type == "checkout.session.completed":
        tenant = apply_checkout_completed(session, obj)
    elif event_type in {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }:
        if event_type == "customer.subscription.deleted":
            obj = {**obj, "status": "canceled"}
        tenant = apply_subscription_change(session, obj)
    else:
        logger.debug("Ignoring billing event type %s", event_type)
        return {"received": True, "handled": False}
    return {"received": True, "handled": tenant is not None}


__all__ = [
    "ActivePlanCheck",
    "LOGIN_URL",
    "SubscriptionStatusPayload",
    "apply_checkout_completed",
    "apply_subscription_change",
    "build_status_payload",
    "check_feature_access",
    "get_subscription_status",
    "get_tenant",
    "handle_billing_event",
    "require_active_plan",
    "start_trial",
    "subscription_settings_url",
]
