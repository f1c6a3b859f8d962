"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.tenant import Tenant
from services.entitlements import EntitlementSet, resolve_entitlements
from services.payments.stripe_billing import StripeBillingClient, get_billing_client as build_billing_client
from services.plan_guard import FeatureAccessError, ensure_active_plan, ensure_feature
from services.subscription_service import get_tenant
from services.subscription_status import DerivedStatus, compute_status

TENANT_HEADER = "x-tenant-id"


def get_tenant_id(request: Request) -> Optional[str]:
    """Tenant resolved by the auth layer, falling back to the tenant header."""
    tenant_id = getattr(request.state, "tenant_id", None) or request.headers.get(TENANT_HEADER)
    if tenant_id is None:
        return None
    tenant_id = tenant_id.strip()
    return tenant_id or None


def get_optional_tenant(
    tenant_id: Optional[str] = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Optional[Tenant]:
    return get_tenant(db, tenant_id)


def get_current_tenant(tenant: Optional[Tenant] = Depends(get_optional_tenant)) -> Tenant:
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.required", "message": "Inicia sesión para continuar."},
        )
    return tenant


def get_derived_status(tenant: Optional[Tenant] = Depends(get_optional_tenant)) -> DerivedStatus:
    return compute_status(tenant)


def get_entitlements(
    tenant: Optional[Tenant] = Depends(get_optional_tenant),
    derived: DerivedStatus = Depends(get_derived_status),
) -> EntitlementSet:
    return resolve_entitlements(tenant.plan_type if tenant else None, derived)


def require_feature(feature_key: str):
    """Dependency factory that ensures the tenant's entitlements include the feature."""

    def _dependency(entitlements: EntitlementSet = Depends(get_entitlements)) -> EntitlementSet:
        try:
            ensure_feature(entitlements, feature_key)
        except FeatureAccessError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail())
        return entitlements

    return _dependency


def require_active_subscription(derived: DerivedStatus = Depends(get_derived_status)) -> DerivedStatus:
    try:
        return ensure_active_plan(derived)
    except FeatureAccessError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail())


def get_billing_client() -> StripeBillingClient:
    try:
        return build_billing_client()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "billing.unconfigured", "message": str(exc)},
        ) from exc
