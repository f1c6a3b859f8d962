from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core.plan_constants import PlanType
from services.entitlements import (
    FEATURE_KEYS,
    clear_feature_matrix_cache,
    get_feature_label,
    has_feature,
    load_feature_matrix,
    resolve_entitlements,
)
from services.subscription_status import compute_status

NOW = datetime(2025, 12, 10, tzinfo=timezone.utc)


def test_higher_tiers_include_lower_tier_features() -> None:
    matrix = load_feature_matrix()
    assert matrix["BASICO"] <= matrix["PROFESIONAL"] <= matrix["CLINICA"] <= matrix["EMPRESA"]
    assert matrix["EMPRESA"] == frozenset(FEATURE_KEYS)


@pytest.mark.parametrize(
    ("plan", "feature", "expected"),
    [
        ("BASICO", "smsReminders", True),
        ("BASICO", "advancedReports", False),
        ("PROFESIONAL", "advancedReports", True),
        ("PROFESIONAL", "automations", False),
        ("CLINICA", "automations", True),
        ("CLINICA", "apiKeys", False),
        ("EMPRESA", "webhooks", True),
        (PlanType.EMPRESA, "apiKeys", True),
    ],
)
def test_has_feature_follows_table(plan, feature: str, expected: bool) -> None:
    assert has_feature(plan, feature) is expected


@pytest.mark.parametrize(("plan", "feature"), [("EMPRESA", "teleportation"), ("GOLD", "smsReminders"), (None, "apiKeys")])
def test_has_feature_fails_closed(plan, feature: str) -> None:
    assert has_feature(plan, feature) is False


def test_inactive_status_resolves_to_no_features() -> None:
    status = compute_status({"subscriptionStatus": "PAST_DUE", "planType": "EMPRESA"}, now=NOW)
    entitlements = resolve_entitlements("EMPRESA", status)
    assert entitlements.features == frozenset()
    assert entitlements.source == "inactive"
    assert entitlements.allows("apiKeys") is False


def test_active_trial_grants_full_access() -> None:
    tenant = {
        "subscriptionStatus": "TRIALING",
        "isTrialPeriod": True,
        "trialEndsAt": "2025-12-20",
        "planType": "EMPRESA",
    }
    entitlements = resolve_entitlements("EMPRESA", compute_status(tenant, now=NOW))
    assert entitlements.source == "trial"
    assert entitlements.allows("multiDoctor") is True
    assert entitlements.allows("apiKeys") is True
    assert entitlements.features == frozenset(FEATURE_KEYS)


def test_trial_on_entry_plan_still_gets_full_access() -> None:
    tenant = {
        "subscriptionStatus": "TRIALING",
        "isTrialPeriod": True,
        "trialEndsAt": "2025-12-20",
        "planType": "BASICO",
    }
    entitlements = resolve_entitlements("BASICO", compute_status(tenant, now=NOW))
    assert entitlements.allows("webhooks") is True
    assert has_feature("BASICO", "webhooks") is False


def test_paid_plan_uses_plan_row_and_exposes_flags() -> None:
    status = compute_status({"subscriptionStatus": "ACTIVE", "planType": "CLINICA"}, now=NOW)
    entitlements = resolve_entitlements("CLINICA", status)
    assert entitlements.source == "plan"
    flags = entitlements.feature_flags()
    assert set(flags) == set(FEATURE_KEYS)
    assert flags["automations"] is True
    assert flags["webhooks"] is False


def test_override_file_replaces_rows(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    override = tmp_path / "plan_features.json"
    override.write_text(
        json.dumps({"basico": ["smsReminders", "advancedReports", "notAFeature"], "GOLD": ["apiKeys"]}),
        encoding="utf-8",
    )
    monkeypatch.setenv("PLAN_FEATURES_FILE", str(override))
    clear_feature_matrix_cache()

    assert has_feature("BASICO", "advancedReports") is True
    assert has_feature("BASICO", "notAFeature") is False
    assert has_feature("PROFESIONAL", "multiDoctor") is True


def test_unreadable_override_keeps_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    override = tmp_path / "broken.json"
    override.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("PLAN_FEATURES_FILE", str(override))
    clear_feature_matrix_cache()

    assert has_feature("BASICO", "advancedReports") is False
    assert has_feature("EMPRESA", "apiKeys") is True


def test_feature_labels_are_localised() -> None:
    assert get_feature_label("advancedReports") == "Reportes avanzados"
    assert get_feature_label("custom") == "custom"
