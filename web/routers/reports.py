"""Clinic report routes gated by plan entitlements."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from services.entitlements import EntitlementSet
from services.subscription_status import DerivedStatus
from web.deps import require_active_subscription, require_feature

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/basic", summary="Reportes básicos, disponibles con cualquier plan activo.")
def read_basic_reports(derived: DerivedStatus = Depends(require_active_subscription)) -> dict:
    return {
        "report": "basic",
        "planType": derived.plan_type.value if derived.plan_type else None,
        "status": derived.status,
    }


@router.get("/advanced", summary="Reportes avanzados, requieren un plan que los incluya.")
def read_advanced_reports(entitlements: EntitlementSet = Depends(require_feature("advancedReports"))) -> dict:
    return {
        "report": "advanced",
        "planType": entitlements.plan_type.value if entitlements.plan_type else None,
        "source": entitlements.source,
    }
