"""Shared helpers for serialising subscription state into API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, cast

from models.subscription_event import SubscriptionEvent
from schemas.api.subscription import (
    BlockedFeatureSchema,
    CurrentPlanSchema,
    EntitlementsResponse,
    NewPricingSchema,
    PlanLimitsSchema,
    PlanPricingSchema,
    ProrationSchema,
    SubscriptionEventListResponse,
    SubscriptionEventSchema,
    SubscriptionStatusResponse,
    SubscriptionSummaryResponse,
    TrialBannerResponse,
    UpgradeOptionSchema,
    UpgradeOptionsResponse,
    UpgradePlan,
    UpgradeResponse,
)
from services.entitlements import EntitlementSet
from services.pricing import format_price
from services.subscription_service import SubscriptionStatusPayload
from services.subscription_status import SubscriptionSummary, TrialBanner, get_trial_message, parse_timestamp
from services.upgrade_service import UpgradeOptions, UpgradeResult


def _iso(value: Optional[datetime]) -> Optional[str]:
    parsed = parse_timestamp(value)
    return parsed.isoformat() if parsed else None


def serialize_status(payload: Optional[SubscriptionStatusPayload]) -> Optional[SubscriptionStatusResponse]:
    if payload is None:
        return None
    return SubscriptionStatusResponse(
        isActive=payload.is_active,
        planType=payload.plan_type,
        planName=payload.plan_name,
        status=payload.status,
        renewalDate=_iso(payload.renewal_date),
        isTrialPeriod=payload.is_trial_period,
        trialEndsAt=_iso(payload.trial_ends_at),
        daysRemaining=payload.days_remaining,
    )


def serialize_summary(summary: SubscriptionSummary) -> SubscriptionSummaryResponse:
    return SubscriptionSummaryResponse(
        isActive=summary.is_active,
        isTrialing=summary.is_trialing,
        isPastDue=summary.is_past_due,
        isCanceled=summary.is_canceled,
        planName=summary.plan_name,
        subscriptionEndsAt=_iso(summary.subscription_ends_at),
        hasActiveSubscription=summary.has_active_subscription,
        needsPayment=summary.needs_payment,
        isInTrial=summary.is_in_trial,
        subscriptionStatus=summary.subscription_status,
    )


def serialize_entitlements(entitlements: EntitlementSet) -> EntitlementsResponse:
    return EntitlementsResponse(
        planType=entitlements.plan_type.value if entitlements.plan_type else None,
        source=entitlements.source,
        features=sorted(entitlements.features),
        featureFlags=entitlements.feature_flags(),
    )


def serialize_trial_banner(banner: TrialBanner) -> TrialBannerResponse:
    message = get_trial_message(banner.days_remaining) if banner.status != "converted" else None
    return TrialBannerResponse(
        status=banner.status,  # type: ignore[arg-type]
        daysRemaining=banner.days_remaining,
        displayMessage=banner.display_message,
        message=message,
        bannerType=banner.banner_type,  # type: ignore[arg-type]
        showUpgradePrompt=banner.show_upgrade_prompt,
        blockedFeatures=[
            BlockedFeatureSchema(feature=item.feature, allowed=item.allowed, reason=item.reason)
            for item in banner.blocked_features
        ],
    )


def serialize_upgrade_options(options: UpgradeOptions) -> UpgradeOptionsResponse:
    return UpgradeOptionsResponse(
        currentPlan=CurrentPlanSchema(
            key=options.current_plan.value if options.current_plan else None,
            tier=options.current_tier,
            isTrialPeriod=options.is_trial_period,
            subscriptionStatus=options.subscription_status,
        ),
        availableUpgrades=[
            UpgradeOptionSchema(
                planKey=cast(UpgradePlan, option.plan_type.value),
                name=option.name,
                tier=option.tier,
                limits=PlanLimitsSchema(**option.limits.to_dict()) if option.limits else None,
                pricing=PlanPricingSchema(**option.pricing.to_dict()) if option.pricing else None,
            )
            for option in options.available
        ],
        canUpgrade=options.can_upgrade,
    )


def serialize_upgrade_result(result: UpgradeResult) -> UpgradeResponse:
    proration = None
    if result.proration is not None:
        proration = ProrationSchema(
            amountDue=result.proration.amount_due,
            currency=result.proration.currency,
            nextPaymentAt=_iso(result.proration.next_payment_at),
        )
    new_pricing = None
    if result.new_pricing is not None:
        amount = result.new_pricing.amount_for(result.billing_interval)
        new_pricing = NewPricingSchema(
            plan=cast(UpgradePlan, result.plan_type.value),
            billingInterval=result.billing_interval.value,  # type: ignore[arg-type]
            amount=amount,
            formatted=format_price(amount),
        )
    return UpgradeResponse(
        success=result.success,
        type=result.type,  # type: ignore[arg-type]
        message=result.message,
        checkoutUrl=result.checkout_url,
        subscriptionId=result.subscription_id,
        subscriptionStatus=result.subscription_status,
        proration=proration,
        newPricing=new_pricing,
    )


def serialize_events(events: Iterable[SubscriptionEvent]) -> SubscriptionEventListResponse:
    return SubscriptionEventListResponse(
        events=[
            SubscriptionEventSchema(
                eventType=event.event_type,
                fromPlan=event.from_plan,
                toPlan=event.to_plan,
                status=event.status,
                message=event.message,
                createdAt=_iso(event.created_at),
            )
            for event in events
        ]
    )


__all__ = [
    "serialize_entitlements",
    "serialize_events",
    "serialize_status",
    "serialize_summary",
    "serialize_trial_banner",
    "serialize_upgrade_options",
    "serialize_upgrade_result",
]
