"""Billing provider helpers."""

from .stripe_billing import (
    BillingProviderError,
    StripeBillingClient,
    get_billing_client,
    get_stripe_webhook_secret,
    verify_stripe_signature,
)

__all__ = [
    "BillingProviderError",
    "StripeBillingClient",
    "get_billing_client",
    "get_stripe_webhook_secret",
    "verify_stripe_signature",
]
