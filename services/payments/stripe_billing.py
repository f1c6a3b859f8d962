"""Stripe REST client for checkout, subscription changes and the billing portal."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx

from core.env import env_int, env_str, require_env_vars

logger = logging.getLogger(__name__)

DEFAULT_STRIPE_API_BASE_URL = "https://api.stripe.com"
DEFAULT_SIGNATURE_TOLERANCE_SECONDS = 300


class BillingProviderError(RuntimeError):
    """Raised when the billing provider rejects a request or cannot be reached."""

    def __init__(self, status_code: int, message: str, *, payload: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


def _encode_form(data: Mapping[str, Any], prefix: Optional[str] = None) -> List[Tuple[str, str]]:
    """Flatten nested mappings/lists into Stripe's bracketed form keys."""
    pairs: List[Tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.extend(_encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, Mapping):
                    pairs.extend(_encode_form(item, item_name))
                else:
                    pairs.append((item_name, str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


@dataclass(slots=True)
class StripeBillingClient:
    """HTTP client wrapper for the Stripe API."""

    secret_key: str
    base_url: str = DEFAULT_STRIPE_API_BASE_URL
    timeout: float = 10.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        content = urlencode(_encode_form(data)) if data else None
        if content is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        query = _encode_form(params) if params else None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, content=content, params=query)
        except httpx.HTTPError as exc:
            logger.warning("Stripe request %s %s failed: %s", method, path, exc)
            raise BillingProviderError(503, "No se pudo contactar al proveedor de pagos.") from exc
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"body": response.text}
            error = payload.get("error") if isinstance(payload.get("error"), Mapping) else {}
            message = error.get("message") or "La solicitud al proveedor de pagos falló."
            logger.warning("Stripe API error %s: %s", response.status_code, payload)
            raise BillingProviderError(response.status_code, message, payload=payload)
        return response.json()

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a subscription-mode checkout session."""
        logger.info("Creating Stripe checkout session price=%s customer=%s", price_id, customer_id)
        payload: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer": customer_id,
            "customer_email": None if customer_id else customer_email,
            "metadata": dict(metadata or {}),
            "subscription_data": {"metadata": dict(metadata or {})},
        }
        return await self._request("POST", "/v1/checkout/sessions", data=payload)

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/subscriptions/{subscription_id}")

    async def update_subscription_price(
        self,
        subscription_id: str,
        *,
        item_id: str,
        price_id: str,
        proration_behavior: str = "always_invoice",
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Swap the price on a subscription item, invoicing the proration immediately."""
        logger.info("Updating Stripe subscription %s to price=%s", subscription_id, price_id)
        payload: Dict[str, Any] = {
            "items": [{"id": item_id, "price": price_id}],
            "proration_behavior": proration_behavior,
            "metadata": dict(metadata or {}),
        }
        return await self._request("POST", f"/v1/subscriptions/{subscription_id}", data=payload)

    async def retrieve_upcoming_invoice(self, *, customer_id: str, subscription_id: str) -> Dict[str, Any]:
        params = {"customer": customer_id, "subscription": subscription_id}
        return await self._request("GET", "/v1/invoices/upcoming", params=params)

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, Any]:
        logger.info("Creating Stripe billing portal session for customer=%s", customer_id)
        payload = {"customer": customer_id, "return_url": return_url}
        return await self._request("POST", "/v1/billing_portal/sessions", data=payload)


def get_billing_client() -> StripeBillingClient:
    require_env_vars(["STRIPE_SECRET_KEY"], context="billing")
    secret_key = env_str("STRIPE_SECRET_KEY") or ""
    base_url = env_str("STRIPE_API_BASE_URL", DEFAULT_STRIPE_API_BASE_URL) or DEFAULT_STRIPE_API_BASE_URL
    return StripeBillingClient(secret_key=secret_key, base_url=base_url)


def get_stripe_webhook_secret() -> str:
    require_env_vars(["STRIPE_WEBHOOK_SECRET"], context="billing webhook")
    return env_str("STRIPE_WEBHOOK_SECRET") or ""


def verify_stripe_signature(
    *,
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str] = None,
    tolerance_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    """Validate a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>``) against ``payload``."""
    if not payload or not signature_header:
        return False

    timestamp: Optional[str] = None
    candidates: List[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            candidates.append(value)
    if not timestamp or not candidates:
        return False

    try:
        issued_at = int(timestamp)
    except ValueError:
        logger.debug("Stripe signature carried a non-numeric timestamp.")
        return False

    tolerance = tolerance_seconds
    if tolerance is None:
        tolerance = env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_SIGNATURE_TOLERANCE_SECONDS, minimum=0)
    current = time.time() if now is None else now
    if tolerance and abs(current - issued_at) > tolerance:
        logger.warning("Stripe webhook timestamp outside tolerance window.")
        return False

    secret_key = secret or get_stripe_webhook_secret()
    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret_key.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)


__all__ = [
    "BillingProviderError",
    "StripeBillingClient",
    "get_billing_client",
    "get_stripe_webhook_secret",
    "verify_stripe_signature",
]
