"""Plan upgrades: trial conversion through checkout and prorated plan changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.env import env_str
from core.plan_constants import UPGRADE_TARGETS, BillingInterval, PlanType, SubscriptionState
from models.tenant import Tenant
from services.payments.stripe_billing import BillingProviderError, StripeBillingClient
from services.pricing import (
    PlanLimits,
    PlanPricing,
    get_plan_display_name,
    get_plan_limits,
    get_plan_pricing,
    get_price_id,
)
from services.subscription_audit import record_subscription_event
from services.subscription_status import from_epoch

logger = logging.getLogger(__name__)

TRIAL_CONVERSION = "trial_conversion"
PLAN_CHANGE = "plan_change"

_UPGRADEABLE_PROVIDER_STATES = {"active", "trialing"}


@dataclass(slots=True)
class UpgradeError(RuntimeError):
    """Raised when an upgrade request cannot be honoured. The tenant row is left untouched."""

    code: str
    message: str
    status_code: int = 400

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(slots=True)
class UpgradeRequest:
    target_plan: PlanType
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    from_trial: bool = False


@dataclass(slots=True)
class Proration:
    amount_due: float
    currency: str
    next_payment_at: Optional[datetime] = None


@dataclass(slots=True)
class UpgradeResult:
    success: bool
    type: str
    message: str
    plan_type: PlanType
    billing_interval: BillingInterval
    checkout_url: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    proration: Optional[Proration] = None
    new_pricing: Optional[PlanPricing] = None


@dataclass(slots=True)
class UpgradeOption:
    plan_type: PlanType
    name: str
    tier: int
    limits: Optional[PlanLimits]
    pricing: Optional[PlanPricing]


@dataclass(slots=True)
class UpgradeOptions:
    current_plan: Optional[PlanType]
    current_tier: int
    is_trial_period: bool
    subscription_status: Optional[str]
    available: List[UpgradeOption] = field(default_factory=list)

    @property
    def can_upgrade(self) -> bool:
        return bool(self.available)


def _current_rank(tenant: Tenant) -> int:
    plan = PlanType.parse(tenant.plan_type)
    return plan.rank if plan is not None else PlanType.BASICO.rank


def _is_trial_conversion(tenant: Tenant, request: UpgradeRequest) -> bool:
    return request.from_trial or (bool(tenant.is_trial_period) and not tenant.stripe_subscription_id)


def _app_base_url() -> str:
    return (env_str("APP_BASE_URL", "http://localhost:3000") or "http://localhost:3000").rstrip("/")


def list_upgrade_options(tenant: Tenant) -> UpgradeOptions:
    """Plans the tenant may move to. A trial may convert into its own tier."""
    rank = _current_rank(tenant)
    converting = bool(tenant.is_trial_period) and not tenant.stripe_subscription_id
    available = [
        UpgradeOption(
            plan_type=plan,
            name=get_plan_display_name(plan) or plan.value,
            tier=plan.rank,
            limits=get_plan_limits(plan),
            pricing=get_plan_pricing(plan),
        )
        for plan in UPGRADE_TARGETS
        if plan.rank > rank or (converting and plan.rank == rank)
    ]
    return UpgradeOptions(
        current_plan=PlanType.parse(tenant.plan_type),
        current_tier=rank,
        is_trial_period=bool(tenant.is_trial_period),
        subscription_status=tenant.subscription_status,
        available=available,
    )


def _validate_plan_change(tenant: Tenant, target: PlanType) -> None:
    if target.rank <= _current_rank(tenant):
        raise UpgradeError(
            code="subscription.invalid_upgrade",
            message="Solo puedes cambiar a un plan superior a tu plan actual.",
        )
    if not tenant.stripe_subscription_id:
        raise UpgradeError(
            code="subscription.no_active_subscription",
            message="No se encontró una suscripción activa para actualizar.",
        )


class UpgradeService:
    """Executes upgrades against the billing provider, then mirrors the result onto the tenant."""

    def __init__(self, session: Session, billing_client: StripeBillingClient) -> None:
        self._session = session
        self._billing = billing_client

    async def upgrade(self, tenant: Tenant, request: UpgradeRequest) -> UpgradeResult:
        if request.target_plan not in UPGRADE_TARGETS:
            raise UpgradeError(
                code="subscription.invalid_plan",
                message=f"El plan {request.target_plan.value} no está disponible para actualización.",
            )
        converting = _is_trial_conversion(tenant, request)
        if not converting:
            _validate_plan_change(tenant, request.target_plan)
        price_id = get_price_id(request.target_plan, request.billing_interval)
        if not price_id:
            logger.error(
                "Missing price id for plan=%s interval=%s",
                request.target_plan.value,
                request.billing_interval.value,
            )
            raise UpgradeError(
                code="subscription.price_not_configured",
                message="El precio del plan seleccionado no está configurado.",
                status_code=500,
            )

        if converting:
            return await self._start_trial_conversion(tenant, request, price_id)
        return await self._change_plan(tenant, request, price_id)

    async def _start_trial_conversion(self, tenant: Tenant, request: UpgradeRequest, price_id: str) -> UpgradeResult:
        base_url = _app_base_url()
        plan = request.target_plan
        metadata = {
            "tenantId": tenant.id,
            "planType": plan.value,
            "billingInterval": request.billing_interval.value,
            "upgradeType": TRIAL_CONVERSION,
        }
        try:
            session = await self._billing.create_checkout_session(
                price_id=price_id,
                success_url=f"{base_url}/dashboard?upgrade=success&plan={plan.value}",
                cancel_url=f"{base_url}/precios?upgrade=canceled",
                customer_id=tenant.stripe_customer_id,
                metadata=metadata,
            )
        except BillingProviderError as exc:
            raise UpgradeError(code="billing.provider_error", message=str(exc), status_code=502) from exc

        checkout_url = session.get("url")
        if not checkout_url:
            raise UpgradeError(
                code="billing.provider_error",
                message="El proveedor de pagos no devolvió una URL de pago.",
                status_code=502,
            )
        logger.info("Trial conversion checkout created tenant=%s plan=%s", tenant.id, plan.value)
        return UpgradeResult(
            success=True,
            type=TRIAL_CONVERSION,
            message="Redirigiendo al pago para activar tu plan.",
            plan_type=plan,
            billing_interval=request.billing_interval,
            checkout_url=checkout_url,
        )

    async def _change_plan(self, tenant: Tenant, request: UpgradeRequest, price_id: str) -> UpgradeResult:
        plan = request.target_plan
        try:
            subscription = await self._billing.retrieve_subscription(tenant.stripe_subscription_id)
            provider_status = str(subscription.get("status") or "").lower()
            if provider_status not in _UPGRADEABLE_PROVIDER_STATES:
                raise UpgradeError(
                    code="subscription.not_active",
                    message="Tu suscripción no está activa. Actualiza tu método de pago primero.",
                    status_code=409,
                )
            items = (subscription.get("items") or {}).get("data") or []
            if not items:
                raise UpgradeError(
                    code="subscription.invalid_state",
                    message="La suscripción no tiene conceptos facturables.",
                    status_code=409,
                )
            updated = await self._billing.update_subscription_price(
                tenant.stripe_subscription_id,
                item_id=items[0]["id"],
                price_id=price_id,
                metadata={"tenantId": tenant.id, "planType": plan.value},
            )
        except BillingProviderError as exc:
            logger.warning("Plan change rejected by provider tenant=%s: %s", tenant.id, exc)
            raise UpgradeError(code="billing.provider_error", message=str(exc), status_code=502) from exc

        proration = await self._read_proration(tenant, subscription)
        return self._persist_plan_change(tenant, request, updated, proration)

    async def _read_proration(self, tenant: Tenant, subscription: Mapping[str, Any]) -> Optional[Proration]:
        customer_id = tenant.stripe_customer_id or subscription.get("customer")
        if not customer_id or not tenant.stripe_subscription_id:
            return None
        try:
            invoice = await self._billing.retrieve_upcoming_invoice(
                customer_id=customer_id,
                subscription_id=tenant.stripe_subscription_id,
            )
        except BillingProviderError as exc:
            # The plan change already landed; a missing preview only loses the proration figure.
            logger.warning("Upcoming invoice unavailable tenant=%s: %s", tenant.id, exc)
            return None
        return Proration(
            amount_due=(invoice.get("amount_due") or 0) / 100,
            currency=str(invoice.get("currency") or "mxn").upper(),
            next_payment_at=from_epoch(invoice.get("next_payment_attempt")),
        )

    def _persist_plan_change(
        self,
        tenant: Tenant,
        request: UpgradeRequest,
        updated: Mapping[str, Any],
        proration: Optional[Proration],
    ) -> UpgradeResult:
        plan = request.target_plan
        previous_plan = tenant.plan_type
        provider_status = str(updated.get("status") or "active").lower()
        state = SubscriptionState.parse(provider_status.upper())

        tenant.plan_type = plan.value
        tenant.plan_name = get_plan_display_name(plan)
        tenant.subscription_status = state.value
        tenant.billing_interval = request.billing_interval.value
        tenant.is_trial_period = state is SubscriptionState.TRIALING
        tenant.subscription_ends_at = from_epoch(updated.get("current_period_end")) or tenant.subscription_ends_at
        record_subscription_event(
            self._session,
            tenant_id=tenant.id,
            event_type="upgrade.plan_change",
            from_plan=previous_plan,
            to_plan=plan.value,
            status=state.value,
            context={
                "subscriptionId": tenant.stripe_subscription_id,
                "billingInterval": request.billing_interval.value,
                "prorationAmount": proration.amount_due if proration else None,
            },
        )
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.exception(
                "Plan change confirmed by provider but not persisted tenant=%s; webhook sync will reconcile.",
                tenant.id,
            )
            raise UpgradeError(
                code="subscription.persist_failed",
                message="No se pudo guardar el cambio de plan. Intenta de nuevo en unos minutos.",
                status_code=500,
            ) from exc

        logger.info("Plan changed tenant=%s %s->%s", tenant.id, previous_plan, plan.value)
        return UpgradeResult(
            success=True,
            type=PLAN_CHANGE,
            message=f"Tu plan se actualizó a {tenant.plan_name}.",
            plan_type=plan,
            billing_interval=request.billing_interval,
            subscription_id=tenant.stripe_subscription_id,
            subscription_status=state.value,
            proration=proration,
            new_pricing=get_plan_pricing(plan),
        )


__all__ = [
    "PLAN_CHANGE",
    "Proration",
    "TRIAL_CONVERSION",
    "UpgradeError",
    "UpgradeOption",
    "UpgradeOptions",
    "UpgradeRequest",
    "UpgradeResult",
    "UpgradeService",
    "list_upgrade_options",
]
