"""Plan catalogue: prices, limits and billing-provider price ids."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from core.env import env_str
from core.plan_constants import PLAN_DISPLAY_NAMES, BillingInterval, PlanType

DEFAULT_CURRENCY = "MXN"
UNLIMITED = -1


@dataclass(slots=True, frozen=True)
class PlanPricing:
    monthly: int
    annual: int

    def amount_for(self, interval: BillingInterval) -> int:
        return self.annual if interval is BillingInterval.ANNUAL else self.monthly

    @property
    def annual_savings_percent(self) -> int:
        return calculate_savings_percentage(self.monthly, self.annual * 12)

    def to_dict(self) -> Dict[str, int]:
        return {"monthly": self.monthly, "annual": self.annual, "annualSavingsPercent": self.annual_savings_percent}


@dataclass(slots=True, frozen=True)
class PlanLimits:
    max_pets: int
    max_users: int

    def to_dict(self) -> Dict[str, int]:
        return {"maxPets": self.max_pets, "maxUsers": self.max_users}


# Monthly price per month, billed monthly or annually.
PLAN_PRICES: Mapping[PlanType, PlanPricing] = {
    PlanType.PROFESIONAL: PlanPricing(monthly=599, annual=479),
    PlanType.CLINICA: PlanPricing(monthly=999, annual=799),
    PlanType.EMPRESA: PlanPricing(monthly=1799, annual=1439),
}

PLAN_LIMITS: Mapping[PlanType, PlanLimits] = {
    PlanType.BASICO: PlanLimits(max_pets=50, max_users=1),
    PlanType.PROFESIONAL: PlanLimits(max_pets=300, max_users=3),
    PlanType.CLINICA: PlanLimits(max_pets=1000, max_users=8),
    PlanType.EMPRESA: PlanLimits(max_pets=UNLIMITED, max_users=20),
}


def get_plan_pricing(plan: PlanType) -> Optional[PlanPricing]:
    return PLAN_PRICES.get(plan)


def get_plan_limits(plan: PlanType) -> Optional[PlanLimits]:
    return PLAN_LIMITS.get(plan)


def get_plan_display_name(plan: Optional[PlanType]) -> Optional[str]:
    if plan is None:
        return None
    return PLAN_DISPLAY_NAMES.get(plan, plan.value)


def get_price_id(plan: PlanType, interval: BillingInterval) -> Optional[str]:
    """Billing-provider price id from ``STRIPE_PRICE_<PLAN>_<INTERVAL>``, read at call time."""
    value = env_str(f"STRIPE_PRICE_{plan.value}_{interval.value.upper()}")
    return value.strip() if value and value.strip() else None


def calculate_annual_savings(monthly_price: float, annual_total: float) -> float:
    return monthly_price * 12 - annual_total


def calculate_savings_percentage(monthly_price: float, annual_total: float) -> int:
    yearly_at_monthly = monthly_price * 12
    if yearly_at_monthly <= 0:
        return 0
    savings = calculate_annual_savings(monthly_price, annual_total)
    return round(savings / yearly_at_monthly * 100)


def format_price(amount: float, currency: str = DEFAULT_CURRENCY) -> str:
    """Format ``amount`` the way prices are shown to Mexican clinics, e.g. ``$1,798.00 MXN``."""
    return f"${amount:,.2f} {currency}"


__all__ = [
    "DEFAULT_CURRENCY",
    "PLAN_LIMITS",
    "PLAN_PRICES",
    "PlanLimits",
    "PlanPricing",
    "UNLIMITED",
    "calculate_annual_savings",
    "calculate_savings_percentage",
    "format_price",
    "get_plan_display_name",
    "get_plan_limits",
    "get_plan_pricing",
    "get_price_id",
]
