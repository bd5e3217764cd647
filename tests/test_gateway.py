"""Stripe adapter behaviour with the SDK patched out."""
import json
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from conftest import sign_payload
from minerpay.config import Settings
from minerpay.core.exceptions import ConfigurationError, GatewayError, SignatureError, ValidationError
from minerpay.models import CheckoutMode, Order, Rental
from minerpay.services.gateway import StripeGateway, verify_webhook_payload


@pytest.fixture
def gateway_settings() -> Settings:
    return Settings(STRIPE_SECRET_KEY="sk_test_unit", STRIPE_WEBHOOK_SECRET="whsec_unit")


def test_disabled_gateway_is_configuration_error():
    with pytest.raises(ConfigurationError):
        StripeGateway(Settings(STRIPE_ENABLED=False, STRIPE_SECRET_KEY="sk_test_unit"))


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        StripeGateway(Settings(STRIPE_SECRET_KEY=""))


def test_connect_disabled_blocks_payee_accounts():
    gateway = StripeGateway(Settings(STRIPE_SECRET_KEY="sk_test_unit", STRIPE_CONNECT_ENABLED=False))

    with pytest.raises(ConfigurationError):
        gateway.create_payee_account(owner_id=1, email="o@example.com", display_name=None, country="US")


def test_rental_intent_carries_split_and_idempotency_key(monkeypatch, gateway_settings):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_unit", client_secret="secret")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)
    rental = Rental(
        id=7,
        machine_id=42,
        renter_id=1,
        owner_id=2,
        platform_fee=Decimal("2.50"),
        owner_payout=Decimal("50.00"),
    )

    StripeGateway(gateway_settings).create_rental_payment_intent(
        rental, amount=Decimal("52.50"), currency="usd", metadata={"rental_id": "999", "source": "web"}
    )

    assert captured["amount"] == 5250
    assert captured["idempotency_key"] == "rental-payment:7"
    assert captured["transfer_group"] == "rental_7"
    assert captured["metadata"]["rental_id"] == "7"
    assert captured["metadata"]["owner_payout"] == "50.00"
    assert captured["metadata"]["source"] == "web"


def test_replacement_intent_uses_its_own_idempotency_key(monkeypatch, gateway_settings):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_next", client_secret="secret")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)
    rental = Rental(id=7, machine_id=42, renter_id=1, owner_id=2, platform_fee=Decimal("2.50"), owner_payout=Decimal("50.00"))

    StripeGateway(gateway_settings).create_rental_payment_intent(
        rental, amount=Decimal("52.50"), currency="usd", metadata={}, replaces="pi_old"
    )

    assert captured["idempotency_key"] == "rental-payment:7:after:pi_old"


def test_checkout_session_collects_shipping_only_for_payments(monkeypatch, gateway_settings):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_unit", url="https://checkout.stripe.test/cs_unit")

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    order = Order(id=11, buyer_id=3, mode=CheckoutMode.SUBSCRIPTION)

    StripeGateway(gateway_settings).create_checkout_session(
        order, line_items=[], customer_id="cus_1", success_url="https://s", cancel_url="https://c"
    )

    assert captured["mode"] == "subscription"
    assert "shipping_address_collection" not in captured
    assert captured["idempotency_key"] == "checkout-session:order:11"
    assert captured["billing_address_collection"] == "required"


def test_existing_customer_is_reused(monkeypatch, gateway_settings):
    created = []
    monkeypatch.setattr(
        stripe.Customer, "list", lambda **kwargs: SimpleNamespace(data=[SimpleNamespace(id="cus_existing")])
    )
    monkeypatch.setattr(stripe.Customer, "create", lambda **kwargs: created.append(kwargs))

    customer = StripeGateway(gateway_settings).find_or_create_customer("b@example.com", metadata={})

    assert customer.id == "cus_existing"
    assert created == []


def test_card_error_is_not_retryable(monkeypatch, gateway_settings):
    def _decline(**kwargs):
        raise stripe.CardError("Your card was declined.", param=None, code="card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _decline)
    rental = Rental(id=1, machine_id=1, renter_id=1, owner_id=2, platform_fee=Decimal("1"), owner_payout=Decimal("9"))

    with pytest.raises(GatewayError) as excinfo:
        StripeGateway(gateway_settings).create_rental_payment_intent(
            rental, amount=Decimal("10.00"), currency="usd", metadata={}
        )
    assert excinfo.value.retryable is False


def test_authentication_error_maps_to_configuration(monkeypatch, gateway_settings):
    def _unauthorized(**kwargs):
        raise stripe.AuthenticationError("Invalid API Key provided")

    monkeypatch.setattr(stripe.Account, "create", _unauthorized)

    with pytest.raises(ConfigurationError):
        StripeGateway(gateway_settings).create_payee_account(
            owner_id=1, email="o@example.com", display_name=None, country="US"
        )


def test_verify_accepts_valid_signature(gateway_settings):
    body = json.dumps({"id": "evt_1", "type": "account.updated", "data": {"object": {}}}).encode()

    event = verify_webhook_payload(body, sign_payload(body, secret="whsec_unit"), gateway_settings)

    assert event["id"] == "evt_1"


def test_verify_rejects_tampered_body(gateway_settings):
    body = json.dumps({"id": "evt_1", "type": "account.updated"}).encode()
    header = sign_payload(body, secret="whsec_unit")

    with pytest.raises(SignatureError):
        verify_webhook_payload(body.replace(b"evt_1", b"evt_2"), header, gateway_settings)


def test_verify_rejects_old_timestamp(gateway_settings):
    body = b'{"id": "evt_1", "type": "x"}'
    header = sign_payload(body, secret="whsec_unit", timestamp=int(time.time()) - 10_000)

    with pytest.raises(SignatureError):
        verify_webhook_payload(body, header, gateway_settings)


def test_verify_requires_configured_secret():
    settings = Settings(STRIPE_WEBHOOK_SECRET="", STRIPE_WEBHOOK_SECRET_NEXT="")

    with pytest.raises(ConfigurationError):
        verify_webhook_payload(b"{}", "t=1,v1=abc", settings)


def test_verify_rejects_event_without_type(gateway_settings):
    body = b'{"id": "evt_1"}'

    with pytest.raises(ValidationError):
        verify_webhook_payload(body, sign_payload(body, secret="whsec_unit"), gateway_settings)
