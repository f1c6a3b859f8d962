from __future__ import annotations

import asyncio
import hashlib
import hmac
from urllib.parse import parse_qsl

import httpx
import pytest

from services.payments.stripe_billing import (
    BillingProviderError,
    StripeBillingClient,
    _encode_form,
    get_billing_client,
    verify_stripe_signature,
)

SECRET = "whsec_test"


def _sign(payload: bytes, timestamp: int, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_encode_form_uses_bracketed_keys() -> None:
    pairs = _encode_form(
        {
            "mode": "subscription",
            "line_items": [{"price": "price_x", "quantity": 1}],
            "metadata": {"tenantId": "clinic-1"},
            "customer": None,
            "flag": True,
        }
    )
    assert pairs == [
        ("mode", "subscription"),
        ("line_items[0][price]", "price_x"),
        ("line_items[0][quantity]", "1"),
        ("metadata[tenantId]", "clinic-1"),
        ("flag", "true"),
    ]


def test_checkout_session_posts_form_body(fake_stripe) -> None:
    fake_stripe.on("POST", "/v1/checkout/sessions", json={"id": "cs_1", "url": "https://checkout.test/cs_1"})
    client = fake_stripe.client()

    session = asyncio.run(
        client.create_checkout_session(
            price_id="price_clinica_monthly",
            success_url="https://app.example.test/ok",
            cancel_url="https://app.example.test/cancel",
            customer_id="cus_1",
            metadata={"tenantId": "clinic-1"},
        )
    )

    assert session["url"] == "https://checkout.test/cs_1"
    request = fake_stripe.calls[0]
    assert request.headers["Authorization"] == "Bearer sk_test_123"
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    body = dict(parse_qsl(request.content.decode("utf-8")))
    assert body["mode"] == "subscription"
    assert body["line_items[0][price]"] == "price_clinica_monthly"
    assert body["customer"] == "cus_1"
    assert "customer_email" not in body
    assert body["subscription_data[metadata][tenantId]"] == "clinic-1"


def test_upcoming_invoice_sends_query_params(fake_stripe) -> None:
    fake_stripe.on("GET", "/v1/invoices/upcoming", json={"amount_due": 40000})
    invoice = asyncio.run(fake_stripe.client().retrieve_upcoming_invoice(customer_id="cus_1", subscription_id="sub_1"))
    assert invoice["amount_due"] == 40000
    request = fake_stripe.calls[0]
    assert request.url.params["customer"] == "cus_1"
    assert request.url.params["subscription"] == "sub_1"


def test_provider_error_carries_stripe_message(fake_stripe) -> None:
    fake_stripe.on(
        "GET",
        "/v1/subscriptions/sub_missing",
        status_code=404,
        json={"error": {"message": "No such subscription: 'sub_missing'"}},
    )
    with pytest.raises(BillingProviderError) as exc_info:
        asyncio.run(fake_stripe.client().retrieve_subscription("sub_missing"))
    assert exc_info.value.status_code == 404
    assert "sub_missing" in str(exc_info.value)


def test_network_failure_maps_to_unavailable() -> None:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = StripeBillingClient(secret_key="sk", base_url="https://stripe.test", transport=httpx.MockTransport(_raise))
    with pytest.raises(BillingProviderError) as exc_info:
        asyncio.run(client.retrieve_subscription("sub_1"))
    assert exc_info.value.status_code == 503


def test_get_billing_client_requires_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError):
        get_billing_client()
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_live_x")
    monkeypatch.setenv("STRIPE_API_BASE_URL", "https://stripe.internal")
    client = get_billing_client()
    assert client.secret_key == "sk_live_x"
    assert client.base_url == "https://stripe.internal"


def test_valid_signature_is_accepted() -> None:
    payload = b'{"type":"customer.subscription.updated"}'
    header = _sign(payload, 1_700_000_000)
    assert verify_stripe_signature(payload=payload, signature_header=header, secret=SECRET, now=1_700_000_010) is True


def test_any_matching_v1_candidate_is_accepted() -> None:
    payload = b"{}"
    valid = _sign(payload, 1_700_000_000)
    header = f"t=1700000000,v1=deadbeef,{valid.split(',')[1]}"
    assert verify_stripe_signature(payload=payload, signature_header=header, secret=SECRET, now=1_700_000_000) is True


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "v1=abc",
        "t=abc,v1=abc",
        "t=1700000000",
    ],
)
def test_malformed_signature_headers_are_rejected(header) -> None:
    assert verify_stripe_signature(payload=b"{}", signature_header=header, secret=SECRET, now=1_700_000_000) is False


def test_tampered_payload_is_rejected() -> None:
    header = _sign(b'{"amount":1}', 1_700_000_000)
    assert (
        verify_stripe_signature(payload=b'{"amount":2}', signature_header=header, secret=SECRET, now=1_700_000_000)
        is False
    )


def test_stale_timestamp_is_rejected() -> None:
    payload = b"{}"
    header = _sign(payload, 1_700_000_000)
    assert (
        verify_stripe_signature(
            payload=payload,
            signature_header=header,
            secret=SECRET,
            tolerance_seconds=300,
            now=1_700_000_301,
        )
        is False
    )
    assert (
        verify_stripe_signature(
            payload=payload,
            signature_header=header,
            secret=SECRET,
            tolerance_seconds=0,
            now=1_900_000_000,
        )
        is True
    )
