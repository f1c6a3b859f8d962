"""Billing portal sessions whose return URL triggers a status refresh."""

from __future__ import annotations

import logging
from typing import Optional

from core.env import env_str
from models.tenant import Tenant
from services.payments.stripe_billing import BillingProviderError, StripeBillingClient
from services.status_client import PORTAL_RETURN_PARAM
from services.upgrade_service import UpgradeError

logger = logging.getLogger(__name__)

DEFAULT_RETURN_PATH = "/dashboard"


def build_portal_return_url(return_path: Optional[str] = None) -> str:
    base_url = (env_str("APP_BASE_URL", "http://localhost:3000") or "http://localhost:3000").rstrip("/")
    path = return_path or DEFAULT_RETURN_PATH
    separator = "&" if "?" in path else "?"
    return f"{base_url}{path}{separator}{PORTAL_RETURN_PARAM}=true"


async def create_billing_portal_session(
    tenant: Tenant,
    billing_client: StripeBillingClient,
    *,
    return_path: Optional[str] = None,
) -> str:
    """Open a billing-portal session for ``tenant`` and return its URL."""
    if not tenant.stripe_customer_id:
        raise UpgradeError(
            code="billing.no_customer",
            message="Tu clínica aún no tiene un método de pago registrado.",
        )
    try:
        session = await billing_client.create_portal_session(
            customer_id=tenant.stripe_customer_id,
            return_url=build_portal_return_url(return_path),
        )
    except BillingProviderError as exc:
        raise UpgradeError(code="billing.provider_error", message=str(exc), status_code=502) from exc
    url = session.get("url")
    if not url:
        raise UpgradeError(
            code="billing.provider_error",
            message="El proveedor de pagos no devolvió una URL del portal.",
            status_code=502,
        )
    logger.info("Billing portal session created tenant=%s", tenant.id)
    return str(url)


__all__ = ["build_portal_return_url", "create_billing_portal_session"]
