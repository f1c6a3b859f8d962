"""Shared plan and subscription constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional, Sequence


class PlanType(str, Enum):
    BASICO = "BASICO"
    PROFESIONAL = "PROFESIONAL"
    CLINICA = "CLINICA"
    EMPRESA = "EMPRESA"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value

    @property
    def rank(self) -> int:
        return PLAN_TIER_RANKS[self]

    @classmethod
    def parse(cls, value: Optional[str | "PlanType"]) -> Optional["PlanType"]:
        """Return the matching plan or ``None`` for anything unrecognised."""
        if isinstance(value, PlanType):
            return value
        if not value:
            return None
        normalized = str(value).strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return None


class SubscriptionState(str, Enum):
    """Persisted subscription status, closed over the values we understand."""

    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value

    @classmethod
    def parse(cls, value: Optional[str | "SubscriptionState"]) -> "SubscriptionState":
        # Matching is exact: persisted values are always upper case.
        if isinstance(value, SubscriptionState):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            parsed = cls(str(value))
        except ValueError:
            return cls.UNKNOWN
        return parsed


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


PLAN_TIER_RANKS: Mapping[PlanType, int] = {
    PlanType.BASICO: 0,
    PlanType.PROFESIONAL: 1,
    PlanType.CLINICA: 2,
    PlanType.EMPRESA: 3,
}

UPGRADE_TARGETS: Sequence[PlanType] = (PlanType.PROFESIONAL, PlanType.CLINICA, PlanType.EMPRESA)

PLAN_DISPLAY_NAMES: Mapping[PlanType, str] = {
    PlanType.BASICO: "Plan Básico",
    PlanType.PROFESIONAL: "Plan Profesional",
    PlanType.CLINICA: "Plan Clínica",
    PlanType.EMPRESA: "Plan Empresa",
}

DEFAULT_SUBSCRIPTION_URL = "/dashboard/settings?tab=subscription"

__all__ = [
    "BillingInterval",
    "DEFAULT_SUBSCRIPTION_URL",
    "PLAN_DISPLAY_NAMES",
    "PLAN_TIER_RANKS",
    "PlanType",
    "SubscriptionState",
    "UPGRADE_TARGETS",
]
