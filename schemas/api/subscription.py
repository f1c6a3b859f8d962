"""Pydantic schemas for subscription status, entitlements and upgrades."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

UpgradePlan = Literal["PROFESIONAL", "CLINICA", "EMPRESA"]
BillingIntervalValue = Literal["monthly", "annual"]


class SubscriptionStatusResponse(BaseModel):
    isActive: bool = Field(..., description="Whether the tenant currently has access to paid features.")
    planType: Optional[str] = Field(default=None, description="Subscribed plan tier.")
    planName: Optional[str] = Field(default=None, description="Display name for the plan.")
    status: str = Field(..., description="Derived status label such as active, ending_soon or past_due.")
    renewalDate: Optional[str] = Field(default=None, description="ISO timestamp of the next renewal.")
    isTrialPeriod: bool = Field(default=False, description="Whether the tenant is flagged as being in a trial.")
    trialEndsAt: Optional[str] = Field(default=None, description="ISO timestamp when the trial ends.")
    daysRemaining: Optional[int] = Field(
        default=None,
        description="Signed whole days left in the trial. Null outside a trial.",
    )


class SubscriptionSummaryResponse(BaseModel):
    isActive: bool = False
    isTrialing: bool = False
    isPastDue: bool = False
    isCanceled: bool = False
    planName: Optional[str] = None
    subscriptionEndsAt: Optional[str] = None
    hasActiveSubscription: bool = False
    needsPayment: bool = False
    isInTrial: bool = False
    subscriptionStatus: str = "INACTIVE"


class FeatureAccessResponse(BaseModel):
    feature: str = Field(..., description="Feature key that was checked.")
    allowed: bool = Field(..., description="Whether the tenant's plan and status unlock the feature.")


class EntitlementsResponse(BaseModel):
    planType: Optional[str] = None
    source: str = Field(..., description="Which row of the feature table applied: plan, trial or inactive.")
    features: List[str] = Field(default_factory=list)
    featureFlags: Dict[str, bool] = Field(default_factory=dict)


class ActivePlanResponse(BaseModel):
    allowed: bool
    redirectTo: Optional[str] = Field(default=None, description="Where the client should navigate when denied.")


class BlockedFeatureSchema(BaseModel):
    feature: str
    allowed: bool = False
    reason: Optional[str] = None


class TrialBannerResponse(BaseModel):
    status: Literal["active", "ending_soon", "expired", "converted"]
    daysRemaining: int
    displayMessage: str
    message: Optional[str] = Field(default=None, description="Long-form countdown copy.")
    bannerType: Literal["success", "warning", "danger", "info"]
    showUpgradePrompt: bool = False
    blockedFeatures: List[BlockedFeatureSchema] = Field(default_factory=list)


class PlanPricingSchema(BaseModel):
    monthly: int
    annual: int = Field(..., description="Monthly price when billed annually.")
    annualSavingsPercent: int = 0


class PlanLimitsSchema(BaseModel):
    maxPets: int = Field(..., description="Maximum patients. -1 means unlimited.")
    maxUsers: int


class UpgradeOptionSchema(BaseModel):
    planKey: UpgradePlan
    name: str
    tier: int
    limits: Optional[PlanLimitsSchema] = None
    pricing: Optional[PlanPricingSchema] = None


class CurrentPlanSchema(BaseModel):
    key: Optional[str] = None
    tier: int
    isTrialPeriod: bool = False
    subscriptionStatus: Optional[str] = None


class UpgradeOptionsResponse(BaseModel):
    currentPlan: CurrentPlanSchema
    availableUpgrades: List[UpgradeOptionSchema] = Field(default_factory=list)
    canUpgrade: bool = False


class UpgradeRequestSchema(BaseModel):
    targetPlan: UpgradePlan = Field(..., description="Plan tier to move to.")
    billingInterval: BillingIntervalValue = Field(default="monthly", description="Billing cadence.")
    fromTrial: bool = Field(default=False, description="Force the trial-conversion checkout flow.")

    @field_validator("targetPlan", mode="before")
    @classmethod
    def _normalize_plan(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("billingInterval", mode="before")
    @classmethod
    def _normalize_interval(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ProrationSchema(BaseModel):
    amountDue: float
    currency: str
    nextPaymentAt: Optional[str] = None


class NewPricingSchema(BaseModel):
    plan: UpgradePlan
    billingInterval: BillingIntervalValue
    amount: int
    formatted: str


class UpgradeResponse(BaseModel):
    success: bool
    type: Literal["trial_conversion", "plan_change"]
    message: str
    checkoutUrl: Optional[str] = None
    subscriptionId: Optional[str] = None
    subscriptionStatus: Optional[str] = None
    proration: Optional[ProrationSchema] = None
    newPricing: Optional[NewPricingSchema] = None


class PortalSessionRequest(BaseModel):
    returnPath: Optional[str] = Field(
        default=None,
        max_length=300,
        description="App path to return to after the billing portal. Defaults to /dashboard.",
    )

    @field_validator("returnPath")
    @classmethod
    def _relative_only(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("returnPath must be an application-relative path.")
        return value


class PortalSessionResponse(BaseModel):
    url: str


class SubscriptionEventSchema(BaseModel):
    eventType: str
    fromPlan: Optional[str] = None
    toPlan: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    createdAt: Optional[str] = None


class SubscriptionEventListResponse(BaseModel):
    events: List[SubscriptionEventSchema] = Field(default_factory=list)


class WebhookAckResponse(BaseModel):
    received: bool = True
    handled: bool = False
