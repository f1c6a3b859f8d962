"""Client-side upgrade flow: single submission, checkout redirect and status refresh."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from services.status_client import SubscriptionStatusService
from services.subscription_api_client import SubscriptionApiClient, SubscriptionApiError

logger = logging.getLogger(__name__)

Navigator = Callable[[str], None]
Notifier = Callable[[str, str], None]


def _log_notifier(level: str, message: str) -> None:
    logger.log(logging.ERROR if level == "error" else logging.INFO, "%s", message)


class UpgradeController:
    def __init__(
        self,
        api_client: SubscriptionApiClient,
        *,
        navigator: Navigator,
        notifier: Optional[Notifier] = None,
        status_service: Optional[SubscriptionStatusService] = None,
    ) -> None:
        self._api = api_client
        self._navigator = navigator
        self._notify = notifier or _log_notifier
        self._status_service = status_service
        self.is_upgrading = False
        self.error: Optional[str] = None

    async def upgrade(
        self,
        target_plan: str,
        billing_interval: str = "monthly",
        *,
        from_trial: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Submit an upgrade. Returns the API result, or ``None`` when rejected or already running."""
        if self.is_upgrading:
            logger.info("Upgrade to %s ignored; another upgrade is in progress.", target_plan)
            return None

        self.is_upgrading = True
        self.error = None
        try:
            result = await self._api.submit_upgrade(
                target_plan=target_plan,
                billing_interval=billing_interval,
                from_trial=from_trial,
            )
        except SubscriptionApiError as exc:
            self.error = str(exc)
            self._notify("error", self.error)
            return None
        finally:
            self.is_upgrading = False

        checkout_url = result.get("checkoutUrl")
        if result.get("type") == "trial_conversion" and checkout_url:
            self._navigator(checkout_url)
            return result

        self._notify("success", result.get("message") or "Plan actualizado correctamente.")
        if self._status_service is not None:
            await self._status_service.refresh_status(force=True)
        return result

    async def upgrade_from_trial(self, target_plan: str, billing_interval: str = "monthly") -> Optional[Dict[str, Any]]:
        return await self.upgrade(target_plan, billing_interval, from_trial=True)

    async def fetch_upgrade_info(self) -> Optional[Dict[str, Any]]:
        try:
            return await self._api.fetch_upgrade_options()
        except SubscriptionApiError as exc:
            self.error = str(exc)
            self._notify("error", self.error)
            return None

    async def open_billing_portal(self) -> bool:
        try:
            url = await self._api.create_portal_session()
        except SubscriptionApiError as exc:
            self.error = str(exc)
            self._notify("error", self.error)
            return False
        self._navigator(url)
        return True


__all__ = ["UpgradeController"]
