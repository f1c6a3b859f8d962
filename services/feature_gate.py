"""Feature gate: resolve one entitlement and choose what the consumer should show."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
from urllib.parse import urlencode

from services.entitlements import get_feature_label

logger = logging.getLogger(__name__)

PRICING_PATH = "/precios"

GATE_LOADING = "loading"
GATE_GRANTED = "granted"
GATE_DENIED = "denied"

FeatureChecker = Callable[[str], Awaitable[bool]]
T = TypeVar("T")

_DEFAULT_BENEFITS: tuple[str, ...] = (
    "Acceso inmediato a la función",
    "Cambio de plan con prorrateo automático",
    "Soporte prioritario para tu clínica",
)


def build_upgrade_url(feature_key: str, *, source: str = "feature_guard") -> str:
    return f"{PRICING_PATH}?{urlencode({'source': source, 'feature': feature_key})}"


@dataclass(slots=True)
class UpgradePrompt:
    """Default content shown in place of a gated feature."""

    feature: str
    title: str
    description: str
    upgrade_url: str
    cta_label: str = "Ver planes"
    benefits: tuple[str, ...] = field(default_factory=lambda: _DEFAULT_BENEFITS)

    @classmethod
    def for_feature(cls, feature_key: str) -> "UpgradePrompt":
        label = get_feature_label(feature_key)
        return cls(
            feature=feature_key,
            title=f"{label} no está disponible en tu plan",
            description=f"Actualiza tu plan para desbloquear {label.lower()}.",
            upgrade_url=build_upgrade_url(feature_key),
        )


@dataclass(slots=True)
class GateOutcome:
    state: str
    content: Any = None

    @property
    def is_loading(self) -> bool:
        return self.state == GATE_LOADING


class FeatureGate(Generic[T]):
    """Evaluates a single feature per instance. New instances always check again."""

    def __init__(
        self,
        checker: FeatureChecker,
        feature_key: str,
        children: T,
        fallback: Optional[Any] = None,
        *,
        show_upgrade_prompt: bool = True,
    ) -> None:
        self._checker = checker
        self.feature_key = feature_key
        self.children = children
        self.fallback = fallback
        self.show_upgrade_prompt = show_upgrade_prompt
        self.state = GATE_LOADING

    async def evaluate(self) -> GateOutcome:
        try:
            allowed = await self._checker(self.feature_key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Feature check for %s failed; denying: %s", self.feature_key, exc)
            allowed = False
        self.state = GATE_GRANTED if allowed is True else GATE_DENIED
        return self.render()

    def render(self) -> GateOutcome:
        if self.state == GATE_LOADING:
            return GateOutcome(state=GATE_LOADING)
        if self.state == GATE_GRANTED:
            return GateOutcome(state=GATE_GRANTED, content=self.children)
        if self.fallback is not None:
            return GateOutcome(state=GATE_DENIED, content=self.fallback)
        if self.show_upgrade_prompt:
            return GateOutcome(state=GATE_DENIED, content=UpgradePrompt.for_feature(self.feature_key))
        return GateOutcome(state=GATE_DENIED)


__all__ = [
    "FeatureGate",
    "GATE_DENIED",
    "GATE_GRANTED",
    "GATE_LOADING",
    "GateOutcome",
    "UpgradePrompt",
    "build_upgrade_url",
]
