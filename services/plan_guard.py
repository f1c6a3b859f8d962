"""Server-side enforcement of plan entitlements and active subscriptions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from services.entitlements import EntitlementSet, get_feature_label
from services.subscription_status import DerivedStatus


@dataclass(slots=True)
class FeatureAccessError(RuntimeError):
    """Raised when the tenant's plan or status does not unlock a feature."""

    code: str
    message: str
    feature: Optional[str] = None
    plan_type: Optional[str] = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, Optional[str]]:
        detail: Dict[str, Optional[str]] = {
            "code": self.code,
            "message": self.message,
        }
        if self.feature:
            detail["feature"] = self.feature
        if self.plan_type:
            detail["planType"] = self.plan_type
        return detail


def ensure_feature(entitlements: EntitlementSet, feature_key: str) -> EntitlementSet:
    """Validate that ``entitlements`` include ``feature_key``."""

    if entitlements.allows(feature_key):
        return entitlements
    label = get_feature_label(feature_key)
    plan_label = entitlements.plan_type.value if entitlements.plan_type else None
    raise FeatureAccessError(
        code="plan.feature_required",
        message=f"Tu plan actual no incluye '{label}'. Actualiza tu plan para usar esta función.",
        feature=feature_key,
        plan_type=plan_label,
    )


def ensure_active_plan(status: DerivedStatus) -> DerivedStatus:
    """Validate that the tenant currently has an active subscription or trial."""

    if status.is_active:
        return status
    raise FeatureAccessError(
        code="plan.inactive",
        message="Tu suscripción no está activa. Revisa tu plan para continuar.",
        plan_type=status.plan_type.value if status.plan_type else None,
    )


__all__ = ["FeatureAccessError", "ensure_active_plan", "ensure_feature"]
