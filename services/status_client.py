"""Client-side subscription status service with refresh and portal-return handling."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from core.plan_constants import DEFAULT_SUBSCRIPTION_URL
from services.subscription_status import parse_timestamp

logger = logging.getLogger(__name__)

PORTAL_RETURN_PARAM = "from_portal"


@dataclass(slots=True)
class StatusSnapshot:
    """Status as served by ``GET /subscription/status``."""

    is_active: bool
    status: str
    plan_type: Optional[str] = None
    plan_name: Optional[str] = None
    renewal_date: Optional[datetime] = None
    is_trial_period: bool = False
    trial_ends_at: Optional[datetime] = None
    days_remaining: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StatusSnapshot":
        days = payload.get("daysRemaining")
        return cls(
            is_active=payload.get("isActive") is True,
            status=str(payload.get("status") or "inactive"),
            plan_type=payload.get("planType"),
            plan_name=payload.get("planName"),
            renewal_date=parse_timestamp(payload.get("renewalDate")),
            is_trial_period=payload.get("isTrialPeriod") is True,
            trial_ends_at=parse_timestamp(payload.get("trialEndsAt")),
            days_remaining=int(days) if isinstance(days, (int, float)) else None,
        )


StatusFetcher = Callable[[], Awaitable[Optional[StatusSnapshot]]]
Navigator = Callable[[str], None]
HistoryReplacer = Callable[[str], None]


def has_portal_flag(url: str) -> bool:
    query = urlsplit(url).query
    return any(key == PORTAL_RETURN_PARAM and value.lower() == "true" for key, value in parse_qsl(query))


def strip_portal_flag(url: str) -> str:
    """Return ``url`` without the billing-portal return parameter, keeping everything else."""
    parts = urlsplit(url)
    kept = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != PORTAL_RETURN_PARAM]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


class SubscriptionStatusService:
    """Holds the last fetched status for one consumer and gates navigation on it.

    Redirects issued by :meth:`require_active_plan` are a convenience for the UI.
    Authorization is enforced by the API regardless of what this object reports.
    """

    def __init__(
        self,
        fetcher: StatusFetcher,
        *,
        navigator: Navigator,
        history: Optional[HistoryReplacer] = None,
        default_redirect_url: str = DEFAULT_SUBSCRIPTION_URL,
    ) -> None:
        self._fetcher = fetcher
        self._navigator = navigator
        self._history = history
        self._default_redirect_url = default_redirect_url
        self._inflight: Optional[asyncio.Future[None]] = None
        self._generation = 0
        self._closed = False
        self.status: Optional[StatusSnapshot] = None
        self.error: Optional[str] = None
        self.is_loading = True

    @property
    def is_active(self) -> bool:
        return self.status is not None and self.status.is_active

    @property
    def is_trial_period(self) -> bool:
        return self.status is not None and self.status.is_trial_period

    @property
    def plan_name(self) -> Optional[str]:
        return self.status.plan_name if self.status else None

    @property
    def days_remaining(self) -> Optional[int]:
        return self.status.days_remaining if self.status else None

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, current_url: Optional[str] = None) -> Optional[StatusSnapshot]:
        """Initial load. A billing-portal return forces a fresh fetch and cleans the URL."""
        if current_url and has_portal_flag(current_url):
            if self._history is not None:
                self._history(strip_portal_flag(current_url))
            return await self.refresh_status(force=True)
        return await self.refresh_status()

    async def refresh_status(self, *, force: bool = False) -> Optional[StatusSnapshot]:
        """Fetch the status again. Calls made while a fetch is in flight share it unless ``force``."""
        if self._closed:
            return self.status
        task = self._inflight
        if task is None or task.done() or force:
            self._generation += 1
            task = asyncio.ensure_future(self._load(self._generation))
            self._inflight = task
        self.is_loading = True
        await asyncio.shield(task)
        return self.status

    async def _load(self, generation: int) -> None:
        snapshot: Optional[StatusSnapshot] = None
        error: Optional[str] = None
        try:
            snapshot = await self._fetcher()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Subscription status fetch failed: %s", exc)
            error = str(exc) or exc.__class__.__name__
        if self._closed or generation != self._generation:
            logger.debug("Discarding stale subscription status result (generation=%d).", generation)
            return
        self.status = snapshot
        self.error = error
        self.is_loading = False

    def require_active_plan(self, redirect_url: Optional[str] = None) -> bool:
        """True while loading or active; otherwise navigate to ``redirect_url`` and return False."""
        if self.is_loading or self.is_active:
            return True
        target = redirect_url or self._default_redirect_url
        logger.info("Redirecting inactive subscription to %s", target)
        self._navigator(target)
        return False

    def close(self) -> None:
        """Detach the consumer. Results that arrive afterwards are dropped."""
        self._closed = True


__all__ = [
    "PORTAL_RETURN_PARAM",
    "StatusSnapshot",
    "SubscriptionStatusService",
    "has_portal_flag",
    "strip_portal_flag",
]
