"""Typed httpx client for the subscription API, used by the client-side services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from core.env import env_str
from services.status_client import StatusSnapshot

logger = logging.getLogger(__name__)

DEFAULT_API_PREFIX = "/api/v1/subscription"


class SubscriptionApiError(RuntimeError):
    """Raised when the subscription API answers with an error or cannot be reached."""

    def __init__(self, status_code: int, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass(slots=True)
class SubscriptionApiClient:
    base_url: str
    tenant_id: Optional[str] = None
    prefix: str = DEFAULT_API_PREFIX
    timeout: float = 10.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url.rstrip('/')}{self.prefix}/{path.lstrip('/')}"
        headers: Dict[str, str] = {}
        if self.tenant_id:
            headers["x-tenant-id"] = self.tenant_id
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as exc:
            raise SubscriptionApiError(0, "No se pudo conectar con el servidor.") from exc
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            detail = payload.get("detail") if isinstance(payload, Mapping) else None
            if isinstance(detail, Mapping):
                message = detail.get("message") or "La solicitud falló."
                code = detail.get("code")
            else:
                message = str(detail) if detail else "La solicitud falló."
                code = None
            logger.warning("Subscription API %s %s failed with %s: %s", method, path, response.status_code, message)
            raise SubscriptionApiError(response.status_code, message, code=code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Subscription API %s %s returned a non-JSON body.", method, path)
            raise SubscriptionApiError(response.status_code, "Respuesta inválida del servidor.") from exc

    async def _request_object(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = await self._request(method, path, json=json)
        if not isinstance(payload, Mapping):
            raise SubscriptionApiError(200, "Respuesta inválida del servidor.")
        return dict(payload)

    async def get_subscription_status(self) -> Optional[StatusSnapshot]:
        payload = await self._request("GET", "/status")
        if not isinstance(payload, Mapping):
            return None
        return StatusSnapshot.from_payload(payload)

    async def check_feature_access(self, feature_key: str) -> bool:
        payload = await self._request("GET", f"/features/{feature_key}")
        return isinstance(payload, Mapping) and payload.get("allowed") is True

    async def fetch_upgrade_options(self) -> Dict[str, Any]:
        return await self._request_object("GET", "/upgrade")

    async def submit_upgrade(
        self,
        *,
        target_plan: str,
        billing_interval: str = "monthly",
        from_trial: bool = False,
    ) -> Dict[str, Any]:
        body = {"targetPlan": target_plan, "billingInterval": billing_interval, "fromTrial": from_trial}
        return await self._request_object("POST", "/upgrade", json=body)

    async def create_portal_session(self) -> str:
        payload = await self._request_object("POST", "/portal")
        url = payload.get("url")
        if not isinstance(url, str) or not url:
            raise SubscriptionApiError(200, "No se recibió la URL del portal de facturación.")
        return url


def get_subscription_api_client(tenant_id: Optional[str] = None) -> SubscriptionApiClient:
    base_url = env_str("SUBSCRIPTION_API_BASE_URL", "http://localhost:8000") or "http://localhost:8000"
    return SubscriptionApiClient(base_url=base_url, tenant_id=tenant_id)


__all__ = ["SubscriptionApiClient", "SubscriptionApiError", "get_subscription_api_client"]
