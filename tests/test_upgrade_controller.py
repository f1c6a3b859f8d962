from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx

from services.status_client import StatusSnapshot, SubscriptionStatusService
from services.subscription_api_client import SubscriptionApiClient, SubscriptionApiError
from services.upgrade_controller import UpgradeController


class StubApi:
    """Stands in for SubscriptionApiClient with canned answers."""

    def __init__(self, result: Optional[Dict[str, Any]] = None, error: Optional[SubscriptionApiError] = None) -> None:
        self.result = result or {}
        self.error = error
        self.submissions: List[Tuple[str, str, bool]] = []
        self.gate: Optional[asyncio.Event] = None

    async def submit_upgrade(self, *, target_plan: str, billing_interval: str = "monthly", from_trial: bool = False):
        self.submissions.append((target_plan, billing_interval, from_trial))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return dict(self.result)

    async def fetch_upgrade_options(self) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {"canUpgrade": True}

    async def create_portal_session(self) -> str:
        if self.error is not None:
            raise self.error
        return "https://billing.test/p_1"


def _controller(api: StubApi, status_service: Optional[SubscriptionStatusService] = None):
    navigations: List[str] = []
    notices: List[Tuple[str, str]] = []
    controller = UpgradeController(
        api,  # type: ignore[arg-type]
        navigator=navigations.append,
        notifier=lambda level, message: notices.append((level, message)),
        status_service=status_service,
    )
    return controller, navigations, notices


def test_trial_conversion_navigates_to_checkout() -> None:
    api = StubApi({"type": "trial_conversion", "checkoutUrl": "https://checkout.test/cs_1"})
    controller, navigations, notices = _controller(api)

    result = asyncio.run(controller.upgrade_from_trial("CLINICA", "annual"))

    assert result is not None
    assert api.submissions == [("CLINICA", "annual", True)]
    assert navigations == ["https://checkout.test/cs_1"]
    assert notices == []
    assert controller.is_upgrading is False


def test_plan_change_notifies_and_refreshes_status() -> None:
    fetches: List[int] = []

    async def fetcher() -> StatusSnapshot:
        fetches.append(1)
        return StatusSnapshot(is_active=True, status="active", plan_name="Plan Empresa")

    status_service = SubscriptionStatusService(fetcher, navigator=lambda _url: None)
    api = StubApi({"type": "plan_change", "message": "Tu plan se actualizó a Plan Empresa."})
    controller, navigations, notices = _controller(api, status_service)

    asyncio.run(controller.upgrade("EMPRESA"))

    assert navigations == []
    assert notices == [("success", "Tu plan se actualizó a Plan Empresa.")]
    assert len(fetches) == 1
    assert status_service.plan_name == "Plan Empresa"


def test_rejected_upgrade_sets_error() -> None:
    api = StubApi(error=SubscriptionApiError(400, "Solo planes superiores.", code="subscription.invalid_upgrade"))
    controller, navigations, notices = _controller(api)

    result = asyncio.run(controller.upgrade("PROFESIONAL"))

    assert result is None
    assert controller.error == "Solo planes superiores."
    assert notices == [("error", "Solo planes superiores.")]
    assert navigations == []
    assert controller.is_upgrading is False


def test_duplicate_submission_is_ignored_while_in_flight() -> None:
    api = StubApi({"type": "plan_change", "message": "ok"})

    async def scenario() -> Tuple[Any, Any]:
        api.gate = asyncio.Event()
        controller, _, _ = _controller(api)
        first = asyncio.ensure_future(controller.upgrade("CLINICA"))
        await asyncio.sleep(0)
        assert controller.is_upgrading is True
        second = await controller.upgrade("EMPRESA")
        api.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert api.submissions == [("CLINICA", "monthly", False)]


def test_open_billing_portal_navigates() -> None:
    controller, navigations, _ = _controller(StubApi())
    assert asyncio.run(controller.open_billing_portal()) is True
    assert navigations == ["https://billing.test/p_1"]


def test_open_billing_portal_reports_failure() -> None:
    api = StubApi(error=SubscriptionApiError(400, "Sin método de pago.", code="billing.no_customer"))
    controller, navigations, notices = _controller(api)
    assert asyncio.run(controller.open_billing_portal()) is False
    assert navigations == []
    assert notices == [("error", "Sin método de pago.")]
    assert asyncio.run(controller.fetch_upgrade_info()) is None


def _api_answering(response: httpx.Response) -> SubscriptionApiClient:
    return SubscriptionApiClient(
        base_url="https://app.example.test",
        tenant_id="clinic-1",
        transport=httpx.MockTransport(lambda request: response),
    )


def test_non_json_upgrade_answer_is_reported() -> None:
    api = _api_answering(httpx.Response(200, text="<html>maintenance</html>"))
    controller, navigations, notices = _controller(api)  # type: ignore[arg-type]

    result = asyncio.run(controller.upgrade("CLINICA"))

    assert result is None
    assert navigations == []
    assert notices == [("error", "Respuesta inválida del servidor.")]
    assert controller.is_upgrading is False


def test_portal_answer_without_url_is_reported() -> None:
    api = _api_answering(httpx.Response(200, json={}))
    controller, navigations, notices = _controller(api)  # type: ignore[arg-type]

    assert asyncio.run(controller.open_billing_portal()) is False
    assert navigations == []
    assert notices[0][0] == "error"


def test_null_upgrade_options_are_reported() -> None:
    null_body = httpx.Response(200, content=b"null", headers={"content-type": "application/json"})
    controller, _, notices = _controller(_api_answering(null_body))  # type: ignore[arg-type]

    assert asyncio.run(controller.fetch_upgrade_info()) is None
    assert notices == [("error", "Respuesta inválida del servidor.")]
