from __future__ import annotations

import asyncio
import json
from typing import Dict, List

import httpx
import pytest

from services.subscription_api_client import SubscriptionApiClient, SubscriptionApiError, get_subscription_api_client


def _client(responses: Dict[str, httpx.Response], seen: List[httpx.Request]) -> SubscriptionApiClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses.get(f"{request.method} {request.url.path}", httpx.Response(404, json={"detail": "Not Found"}))

    return SubscriptionApiClient(
        base_url="https://app.example.test/",
        tenant_id="clinic-1",
        transport=httpx.MockTransport(handler),
    )


def test_status_is_parsed_into_snapshot() -> None:
    seen: List[httpx.Request] = []
    client = _client(
        {
            "GET /api/v1/subscription/status": httpx.Response(
                200,
                json={"isActive": False, "status": "past_due", "planType": "CLINICA", "isTrialPeriod": False},
            )
        },
        seen,
    )

    snapshot = asyncio.run(client.get_subscription_status())

    assert snapshot is not None
    assert snapshot.is_active is False
    assert snapshot.status == "past_due"
    assert seen[0].headers["x-tenant-id"] == "clinic-1"


def test_null_status_body_yields_none() -> None:
    null_body = httpx.Response(200, content=b"null", headers={"content-type": "application/json"})
    client = _client({"GET /api/v1/subscription/status": null_body}, [])
    assert asyncio.run(client.get_subscription_status()) is None


def test_feature_check_requires_literal_true() -> None:
    client = _client(
        {"GET /api/v1/subscription/features/apiAccess": httpx.Response(200, json={"allowed": "true"})},
        [],
    )
    assert asyncio.run(client.check_feature_access("apiAccess")) is False


def test_submit_upgrade_posts_camel_case_body() -> None:
    seen: List[httpx.Request] = []
    client = _client(
        {"POST /api/v1/subscription/upgrade": httpx.Response(200, json={"type": "plan_change", "success": True})},
        seen,
    )

    result = asyncio.run(client.submit_upgrade(target_plan="EMPRESA", billing_interval="annual"))

    assert result["type"] == "plan_change"
    assert json.loads(seen[0].content) == {"targetPlan": "EMPRESA", "billingInterval": "annual", "fromTrial": False}


def test_structured_error_detail_is_raised() -> None:
    client = _client(
        {
            "POST /api/v1/subscription/upgrade": httpx.Response(
                400,
                json={"detail": {"code": "subscription.invalid_upgrade", "message": "Solo planes superiores."}},
            )
        },
        [],
    )

    with pytest.raises(SubscriptionApiError) as exc_info:
        asyncio.run(client.submit_upgrade(target_plan="PROFESIONAL"))

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "subscription.invalid_upgrade"
    assert str(exc_info.value) == "Solo planes superiores."


def test_factory_reads_api_base_url() -> None:
    client = get_subscription_api_client("clinic-7")
    assert client.base_url == "https://api.example.test"
    assert client.tenant_id == "clinic-7"
    assert client.prefix == "/api/v1/subscription"


def test_connection_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = SubscriptionApiClient(base_url="https://app.example.test", transport=httpx.MockTransport(handler))
    with pytest.raises(SubscriptionApiError) as exc_info:
        asyncio.run(client.fetch_upgrade_options())
    assert exc_info.value.status_code == 0


def test_non_json_success_body_is_wrapped() -> None:
    client = _client({"POST /api/v1/subscription/upgrade": httpx.Response(200, text="<html></html>")}, [])
    with pytest.raises(SubscriptionApiError) as exc_info:
        asyncio.run(client.submit_upgrade(target_plan="CLINICA"))
    assert exc_info.value.status_code == 200


def test_portal_session_without_url_is_wrapped() -> None:
    client = _client({"POST /api/v1/subscription/portal": httpx.Response(200, json={"url": None})}, [])
    with pytest.raises(SubscriptionApiError):
        asyncio.run(client.create_portal_session())


def test_empty_status_body_yields_none() -> None:
    client = _client({"GET /api/v1/subscription/status": httpx.Response(200)}, [])
    assert asyncio.run(client.get_subscription_status()) is None
