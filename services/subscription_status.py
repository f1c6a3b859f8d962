"""Derive a tenant's subscription/trial state from its persisted billing fields."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, List, Mapping, Optional

from core.env import env_int
from core.plan_constants import PlanType, SubscriptionState

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0
_TRIAL_BLOCKED_FEATURES = ("pets", "appointments", "inventory", "reports", "automations")
_TRIAL_EXPIRED_REASON = "Trial expirado"
_NULL_TENANT_STATUS = "INACTIVE"


@dataclass(slots=True)
class TenantBilling:
    """Billing-relevant subset of a tenant row."""

    plan_type: Optional[str] = None
    plan_name: Optional[str] = None
    subscription_status: Optional[str] = None
    is_trial_period: bool = False
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None

    @classmethod
    def from_source(cls, source: Any) -> Optional["TenantBilling"]:
        """Build a snapshot from an ORM row, a mapping (snake or camel case) or another snapshot."""
        if source is None:
            return None
        if isinstance(source, TenantBilling):
            return source
        if isinstance(source, Mapping):
            def _pick(snake: str, camel: str) -> Any:
                return source.get(snake, source.get(camel))

            return cls(
                plan_type=_pick("plan_type", "planType"),
                plan_name=_pick("plan_name", "planName"),
                subscription_status=_pick("subscription_status", "subscriptionStatus"),
                is_trial_period=bool(_pick("is_trial_period", "isTrialPeriod")),
                trial_ends_at=parse_timestamp(_pick("trial_ends_at", "trialEndsAt")),
                subscription_ends_at=parse_timestamp(_pick("subscription_ends_at", "subscriptionEndsAt")),
            )
        return cls(
            plan_type=getattr(source, "plan_type", None),
            plan_name=getattr(source, "plan_name", None),
            subscription_status=getattr(source, "subscription_status", None),
            is_trial_period=bool(getattr(source, "is_trial_period", False)),
            trial_ends_at=parse_timestamp(getattr(source, "trial_ends_at", None)),
            subscription_ends_at=parse_timestamp(getattr(source, "subscription_ends_at", None)),
        )

    @property
    def state(self) -> SubscriptionState:
        return SubscriptionState.parse(self.subscription_status)

    @property
    def plan(self) -> Optional[PlanType]:
        return PlanType.parse(self.plan_type)


@dataclass(slots=True)
class DerivedStatus:
    """Computed status for a tenant. Never persisted."""

    status: str
    is_active: bool
    days_remaining: Optional[int] = None
    is_trial_period: bool = False
    plan_type: Optional[PlanType] = None
    plan_name: Optional[str] = None
    subscription_state: SubscriptionState = SubscriptionState.UNKNOWN
    raw_status: Optional[str] = None
    effective_end: Optional[datetime] = None
    needs_payment: bool = False
    message: Optional[str] = None

    @property
    def in_trial(self) -> bool:
        """True while the tenant is running on trial entitlements."""
        return self.is_active and self.is_trial_period and self.subscription_state is not SubscriptionState.ACTIVE


@dataclass(slots=True)
class FeatureAccess:
    feature: str
    allowed: bool
    reason: Optional[str] = None


@dataclass(slots=True)
class TrialBanner:
    """Display state for the trial countdown banner."""

    status: str
    days_remaining: int
    display_message: str
    banner_type: str
    show_upgrade_prompt: bool
    blocked_features: List[FeatureAccess] = field(default_factory=list)


@dataclass(slots=True)
class SubscriptionSummary:
    is_active: bool
    is_trialing: bool
    is_past_due: bool
    is_canceled: bool
    plan_name: Optional[str]
    subscription_ends_at: Optional[datetime]
    has_active_subscription: bool
    needs_payment: bool
    is_in_trial: bool
    subscription_status: str


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce ``value`` to an aware datetime, or ``None`` when it cannot be read."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Ignoring unparsable timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def from_epoch(value: Any) -> Optional[datetime]:
    """Provider timestamps are unix seconds."""
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def days_until(end: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``end``, rounded up. Negative once ``end`` has passed."""
    return math.ceil((end - now).total_seconds() / _SECONDS_PER_DAY)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return parse_timestamp(now) or datetime.now(timezone.utc)


def _ending_soon_threshold() -> int:
    return env_int("TRIAL_ENDING_SOON_DAYS", 3, minimum=0)


def _plural_days(days: int) -> str:
    return "día" if days == 1 else "días"


def get_trial_message(days_remaining: int) -> str:
    """Human readable countdown copy for the trial period."""
    if days_remaining < 0:
        elapsed = abs(days_remaining)
        return f"Tu prueba gratuita expiró hace {elapsed} {_plural_days(elapsed)}"
    if days_remaining == 0:
        return "¡Hoy es el último día de tu prueba gratuita!"
    if days_remaining == 1:
        return "Tu prueba gratuita termina mañana"
    if days_remaining <= _ending_soon_threshold():
        return f"Tu prueba gratuita termina en {days_remaining} días"
    return f"Tienes {days_remaining} días restantes en tu prueba gratuita"


def compute_status(tenant: Any, *, now: Optional[datetime] = None) -> DerivedStatus:
    """Compute the derived subscription status for ``tenant`` at ``now``."""
    billing = TenantBilling.from_source(tenant)
    if billing is None:
        return DerivedStatus(status="inactive", is_active=False)

    state = billing.state
    base = dict(
        is_trial_period=billing.is_trial_period,
        plan_type=billing.plan,
        plan_name=billing.plan_name,
        subscription_state=state,
        raw_status=billing.subscription_status,
    )
    current = _resolve_now(now)

    if state is SubscriptionState.CANCELED:
        label = "expired" if billing.is_trial_period else "canceled"
        return DerivedStatus(status=label, is_active=False, needs_payment=True, **base)

    if state is SubscriptionState.PAST_DUE:
        return DerivedStatus(status="past_due", is_active=False, needs_payment=True, **base)

    if state is SubscriptionState.UNKNOWN:
        raw = billing.subscription_status
        if raw:
            logger.warning("Unrecognised subscription status %r; denying access.", raw)
        return DerivedStatus(status=str(raw) if raw else "inactive", is_active=False, **base)

    if billing.is_trial_period:
        end = billing.trial_ends_at or billing.subscription_ends_at
        if end is None:
            return DerivedStatus(status="inactive", is_active=False, **base)
        days = days_until(end, current)
        if days < 0:
            label, active = "expired", False
        elif days <= _ending_soon_threshold():
            label, active = "ending_soon", True
        else:
            label, active = "active", True
        return DerivedStatus(
            status=label,
            is_active=active,
            days_remaining=days,
            effective_end=end,
            message=get_trial_message(days),
            **base,
        )

    end = billing.subscription_ends_at
    return DerivedStatus(
        status=state.value.lower(),
        is_active=state is SubscriptionState.ACTIVE,
        days_remaining=days_until(end, current) if end else None,
        effective_end=end,
        **base,
    )


def calculate_trial_days_remaining(tenant: Any, *, now: Optional[datetime] = None) -> Optional[int]:
    billing = TenantBilling.from_source(tenant)
    if billing is None or not billing.is_trial_period or billing.trial_ends_at is None:
        return None
    return days_until(billing.trial_ends_at, _resolve_now(now))


def calculate_trial_status(tenant: Any, *, now: Optional[datetime] = None) -> TrialBanner:
    """Banner state for the trial countdown. Tenants outside a trial read as converted."""
    days = calculate_trial_days_remaining(tenant, now=now)
    if days is None:
        return TrialBanner(
            status="converted",
            days_remaining=0,
            display_message="Suscripción activa",
            banner_type="info",
            show_upgrade_prompt=False,
        )

    if days < 0:
        elapsed = abs(days)
        return TrialBanner(
            status="expired",
            days_remaining=days,
            display_message=f"Trial expirado hace {elapsed} {_plural_days(elapsed)}",
            banner_type="danger",
            show_upgrade_prompt=True,
            blocked_features=[
                FeatureAccess(feature=name, allowed=False, reason=_TRIAL_EXPIRED_REASON)
                for name in _TRIAL_BLOCKED_FEATURES
            ],
        )

    if days <= _ending_soon_threshold():
        message = "¡Último día de prueba!" if days == 0 else f"Quedan {days} {_plural_days(days)} de prueba"
        return TrialBanner(
            status="ending_soon",
            days_remaining=days,
            display_message=message,
            banner_type="warning",
            show_upgrade_prompt=True,
        )

    return TrialBanner(
        status="active",
        days_remaining=days,
        display_message=f"{days} días restantes de prueba",
        banner_type="success",
        show_upgrade_prompt=False,
    )


def summarize_subscription(tenant: Any) -> SubscriptionSummary:
    """Flat flags describing the persisted subscription, with trial-date precedence."""
    billing = TenantBilling.from_source(tenant)
    if billing is None:
        return SubscriptionSummary(
            is_active=False,
            is_trialing=False,
            is_past_due=False,
            is_canceled=False,
            plan_name=None,
            subscription_ends_at=None,
            has_active_subscription=False,
            needs_payment=False,
            is_in_trial=False,
            subscription_status=_NULL_TENANT_STATUS,
        )

    state = billing.state
    if billing.is_trial_period and billing.trial_ends_at is not None:
        ends_at = billing.trial_ends_at
    else:
        ends_at = billing.subscription_ends_at

    return SubscriptionSummary(
        is_active=state is SubscriptionState.ACTIVE,
        is_trialing=state is SubscriptionState.TRIALING,
        is_past_due=state is SubscriptionState.PAST_DUE,
        is_canceled=state is SubscriptionState.CANCELED,
        plan_name=billing.plan_name,
        subscription_ends_at=ends_at,
        has_active_subscription=state in {SubscriptionState.ACTIVE, SubscriptionState.TRIALING},
        needs_payment=state in {SubscriptionState.PAST_DUE, SubscriptionState.CANCELED},
        is_in_trial=state is SubscriptionState.TRIALING and billing.is_trial_period,
        subscription_status=billing.subscription_status or _NULL_TENANT_STATUS,
    )


__all__ = [
    "DerivedStatus",
    "FeatureAccess",
    "SubscriptionSummary",
    "TenantBilling",
    "TrialBanner",
    "calculate_trial_days_remaining",
    "calculate_trial_status",
    "compute_status",
    "days_until",
    "from_epoch",
    "get_trial_message",
    "parse_timestamp",
    "summarize_subscription",
]
