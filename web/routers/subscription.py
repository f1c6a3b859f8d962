"""Subscription routes: status, entitlements, upgrades, billing portal and provider webhooks."""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.plan_constants import BillingInterval, PlanType
from database import get_db
from models.tenant import Tenant
from schemas.api.subscription import (
    ActivePlanResponse,
    EntitlementsResponse,
    FeatureAccessResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionEventListResponse,
    SubscriptionStatusResponse,
    SubscriptionSummaryResponse,
    TrialBannerResponse,
    UpgradeOptionsResponse,
    UpgradeRequestSchema,
    UpgradeResponse,
    WebhookAckResponse,
)
from services.billing_portal import create_billing_portal_session
from services.entitlements import EntitlementSet
from services.payments.stripe_billing import StripeBillingClient, verify_stripe_signature
from services.subscription_audit import list_subscription_events
from services.subscription_serializers import (
    serialize_entitlements,
    serialize_events,
    serialize_status,
    serialize_summary,
    serialize_trial_banner,
    serialize_upgrade_options,
    serialize_upgrade_result,
)
from services.subscription_service import (
    check_feature_access,
    get_subscription_status,
    handle_billing_event,
    require_active_plan,
)
from services.subscription_status import calculate_trial_status, summarize_subscription
from services.upgrade_service import UpgradeError, UpgradeRequest, UpgradeService, list_upgrade_options
from web.deps import (
    get_billing_client,
    get_current_tenant,
    get_entitlements,
    get_optional_tenant,
    get_tenant_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get(
    "/status",
    response_model=Optional[SubscriptionStatusResponse],
    summary="Estado de la suscripción del tenant actual.",
)
def read_subscription_status(
    tenant_id: Optional[str] = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Optional[SubscriptionStatusResponse]:
    return serialize_status(get_subscription_status(db, tenant_id))


@router.get("/summary", response_model=SubscriptionSummaryResponse, summary="Indicadores de la suscripción.")
def read_subscription_summary(tenant: Optional[Tenant] = Depends(get_optional_tenant)) -> SubscriptionSummaryResponse:
    return serialize_summary(summarize_subscription(tenant))


@router.get("/trial", response_model=TrialBannerResponse, summary="Estado del banner de prueba gratuita.")
def read_trial_banner(tenant: Optional[Tenant] = Depends(get_optional_tenant)) -> TrialBannerResponse:
    return serialize_trial_banner(calculate_trial_status(tenant))


@router.get(
    "/features/{feature_key}",
    response_model=FeatureAccessResponse,
    summary="Indica si el plan actual incluye la función.",
)
def read_feature_access(
    feature_key: str,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> FeatureAccessResponse:
    return FeatureAccessResponse(feature=feature_key, allowed=check_feature_access(db, tenant_id, feature_key))


@router.get("/entitlements", response_model=EntitlementsResponse, summary="Funciones habilitadas para el tenant.")
def read_entitlements(entitlements: EntitlementSet = Depends(get_entitlements)) -> EntitlementsResponse:
    return serialize_entitlements(entitlements)


@router.get(
    "/require-active",
    response_model=ActivePlanResponse,
    summary="Verifica que exista un plan activo y sugiere redirección si no.",
)
def read_require_active(
    tenant_id: Optional[str] = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> ActivePlanResponse:
    check = require_active_plan(db, tenant_id, authenticated=tenant_id is not None)
    return ActivePlanResponse(allowed=check.allowed, redirectTo=check.redirect_to)


@router.get("/upgrade", response_model=UpgradeOptionsResponse, summary="Planes disponibles para actualizar.")
def read_upgrade_options(tenant: Tenant = Depends(get_current_tenant)) -> UpgradeOptionsResponse:
    return serialize_upgrade_options(list_upgrade_options(tenant))


@router.post("/upgrade", response_model=UpgradeResponse, summary="Actualiza el plan o inicia la conversión de prueba.")
async def post_upgrade(
    payload: UpgradeRequestSchema,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    billing: StripeBillingClient = Depends(get_billing_client),
) -> UpgradeResponse:
    request = UpgradeRequest(
        target_plan=PlanType(payload.targetPlan),
        billing_interval=BillingInterval(payload.billingInterval),
        from_trial=payload.fromTrial,
    )
    try:
        result = await UpgradeService(db, billing).upgrade(tenant, request)
    except UpgradeError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    return serialize_upgrade_result(result)


@router.post("/portal", response_model=PortalSessionResponse, summary="Abre el portal de facturación.")
async def post_portal_session(
    payload: Optional[PortalSessionRequest] = Body(default=None),
    tenant: Tenant = Depends(get_current_tenant),
    billing: StripeBillingClient = Depends(get_billing_client),
) -> PortalSessionResponse:
    try:
        url = await create_billing_portal_session(
            tenant,
            billing,
            return_path=payload.returnPath if payload else None,
        )
    except UpgradeError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    return PortalSessionResponse(url=url)


@router.get("/events", response_model=SubscriptionEventListResponse, summary="Historial de cambios de suscripción.")
def read_subscription_events(
    limit: int = 50,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
) -> SubscriptionEventListResponse:
    bounded = max(1, min(limit, 200))
    return serialize_events(list_subscription_events(db, tenant.id, limit=bounded))


@router.post("/webhook", response_model=WebhookAckResponse, summary="Webhook del proveedor de pagos.")
async def post_billing_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAckResponse:
    body = await request.body()
    try:
        verified = verify_stripe_signature(payload=body, signature_header=request.headers.get("stripe-signature"))
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "billing.webhook_unconfigured", "message": str(exc)},
        ) from exc
    if not verified:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.invalid_signature", "message": "Firma del webhook inválida."},
        )
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.invalid_payload", "message": "Cuerpo del webhook inválido."},
        ) from exc
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.invalid_payload", "message": "Cuerpo del webhook inválido."},
        )

    try:
        result = handle_billing_event(db, event)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "billing.webhook_persist_failed", "message": "No se pudo procesar el evento."},
        ) from exc
    logger.info("Processed billing webhook %s handled=%s", event.get("type"), result["handled"])
    return WebhookAckResponse(**result)
