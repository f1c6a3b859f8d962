"""Table-driven feature entitlements per plan tier."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from filelock import FileLock, Timeout

from core.env import env_int, env_str
from core.plan_constants import PlanType
from services.subscription_status import DerivedStatus

logger = logging.getLogger(__name__)

TRIAL_ROW = "TRIAL"

FEATURE_KEYS: tuple[str, ...] = (
    "smsReminders",
    "multiDoctor",
    "advancedReports",
    "advancedInventory",
    "multiLocation",
    "automations",
    "apiKeys",
    "webhooks",
)

_FEATURE_LABELS: Dict[str, str] = {
    "smsReminders": "Recordatorios por SMS",
    "multiDoctor": "Múltiples veterinarios",
    "advancedReports": "Reportes avanzados",
    "advancedInventory": "Inventario avanzado",
    "multiLocation": "Múltiples sucursales",
    "automations": "Automatizaciones",
    "apiKeys": "Acceso a la API",
    "webhooks": "Webhooks",
}

_BASICO = frozenset({"smsReminders"})
_PROFESIONAL = _BASICO | {"multiDoctor", "advancedReports", "advancedInventory", "multiLocation"}
_CLINICA = _PROFESIONAL | {"automations"}
_EMPRESA = _CLINICA | {"apiKeys", "webhooks"}

DEFAULT_FEATURE_MATRIX: Mapping[str, frozenset[str]] = {
    PlanType.BASICO.value: _BASICO,
    PlanType.PROFESIONAL.value: _PROFESIONAL,
    PlanType.CLINICA.value: _CLINICA,
    PlanType.EMPRESA.value: _EMPRESA,
    TRIAL_ROW: frozenset(FEATURE_KEYS),
}

_MATRIX_CACHE: Optional[Dict[str, frozenset[str]]] = None
_MATRIX_CACHE_PATH: Optional[Path] = None


@dataclass(slots=True)
class EntitlementSet:
    """Features unlocked for a tenant at evaluation time."""

    plan_type: Optional[PlanType]
    features: frozenset[str]
    source: str

    def allows(self, feature_key: str) -> bool:
        return feature_key in self.features

    def feature_flags(self) -> Dict[str, bool]:
        return {key: key in self.features for key in FEATURE_KEYS}


def _matrix_path() -> Optional[Path]:
    configured = env_str("PLAN_FEATURES_FILE")
    return Path(configured) if configured else None


def _matrix_lock(path: Path) -> FileLock:
    lock_path = path.parent / f"{path.name}.lock"
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(str(lock_path), timeout=env_int("PLAN_FEATURES_LOCK_TIMEOUT_SECONDS", 5, minimum=1))


def _normalize_rows(payload: Mapping[str, Any]) -> Dict[str, frozenset[str]]:
    rows: Dict[str, frozenset[str]] = {}
    for row, entries in payload.items():
        key = str(row).strip().upper()
        if key not in DEFAULT_FEATURE_MATRIX:
            logger.warning("Ignoring unknown plan row %r in feature matrix override.", row)
            continue
        if not isinstance(entries, list):
            logger.warning("Feature matrix row %s must be a list; keeping defaults.", key)
            continue
        rows[key] = frozenset(str(entry).strip() for entry in entries if str(entry).strip() in FEATURE_KEYS)
    return rows


def load_feature_matrix(*, reload: bool = False) -> Dict[str, frozenset[str]]:
    """Return the plan → features table, with operator overrides from ``PLAN_FEATURES_FILE`` applied."""
    global _MATRIX_CACHE, _MATRIX_CACHE_PATH
    path = _matrix_path()
    if _MATRIX_CACHE is not None and not reload and _MATRIX_CACHE_PATH == path:
        return _MATRIX_CACHE

    matrix: Dict[str, frozenset[str]] = dict(DEFAULT_FEATURE_MATRIX)
    if path is not None:
        try:
            with _matrix_lock(path):
                if path.exists():
                    payload = json.loads(path.read_text(encoding="utf-8"))
                    if isinstance(payload, Mapping):
                        matrix.update(_normalize_rows(payload))
                    else:
                        logger.warning("Feature matrix override at %s is not an object.", path)
        except Timeout:
            logger.error("Feature matrix lock timeout at %s; using defaults.", path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load feature matrix from %s: %s", path, exc)

    _MATRIX_CACHE = matrix
    _MATRIX_CACHE_PATH = path
    return matrix


def clear_feature_matrix_cache() -> None:
    global _MATRIX_CACHE, _MATRIX_CACHE_PATH
    _MATRIX_CACHE = None
    _MATRIX_CACHE_PATH = None


def get_feature_label(feature_key: str) -> str:
    return _FEATURE_LABELS.get(feature_key, feature_key)


def has_feature(plan_type: Optional[str | PlanType], feature_key: str) -> bool:
    """Whether ``plan_type`` unlocks ``feature_key``. Unknown plans or keys never do."""
    plan = PlanType.parse(plan_type)
    if plan is None:
        return False
    return feature_key in load_feature_matrix().get(plan.value, frozenset())


def resolve_entitlements(plan_type: Optional[str | PlanType], status: DerivedStatus) -> EntitlementSet:
    """Features available for ``plan_type`` given the tenant's derived ``status``."""
    plan = PlanType.parse(plan_type)
    if not status.is_active:
        return EntitlementSet(plan_type=plan, features=frozenset(), source="inactive")
    matrix = load_feature_matrix()
    if status.in_trial:
        return EntitlementSet(plan_type=plan, features=matrix.get(TRIAL_ROW, frozenset()), source="trial")
    if plan is None:
        return EntitlementSet(plan_type=None, features=frozenset(), source="unknown_plan")
    return EntitlementSet(plan_type=plan, features=matrix.get(plan.value, frozenset()), source="plan")


__all__ = [
    "DEFAULT_FEATURE_MATRIX",
    "EntitlementSet",
    "FEATURE_KEYS",
    "TRIAL_ROW",
    "clear_feature_matrix_cache",
    "get_feature_label",
    "has_feature",
    "load_feature_matrix",
    "resolve_entitlements",
]
