from decimal import Decimal
import json

import pytest
import stripe

from src.domain.exceptions import GatewayCommunicationError
from src.domain.gateway_status import GatewayNotification, map_gateway_status
from src.domain.state_machine import PaymentStatus
from src.infrastructure.gateway.stripe_gateway import (
    StripeGateway,
    notification_from_stripe_event,
    parse_webhook_event,
    to_minor_units,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("succeeded", PaymentStatus.SUCCEEDED),
        ("processing", PaymentStatus.PROCESSING),
        ("requires_payment_method", PaymentStatus.FAILED),
        ("canceled", PaymentStatus.CANCELED),
        ("requires_action", PaymentStatus.PENDING),
        ("requires_confirmation", PaymentStatus.PENDING),
        ("SUCCEEDED", PaymentStatus.SUCCEEDED),
        ("", PaymentStatus.PENDING),
        (None, PaymentStatus.PENDING),
    ],
)
def test_map_gateway_status(raw, expected):
    assert map_gateway_status(raw) == expected


def test_minor_units_use_decimal_rounding():
    assert to_minor_units(Decimal("19.99"), "usd") == 1999
    assert to_minor_units(Decimal("0.005"), "usd") == 1
    assert to_minor_units(Decimal("1500"), "JPY") == 1500


def _stripe_event(event_type="payment_intent.succeeded", status="succeeded"):
    return {
        "id": "evt_1",
        "type": event_type,
        "created": 1_700_000_000,
        "data": {"object": {"id": "pi_123", "object": "payment_intent", "status": status}},
    }


def test_notification_from_payment_intent_event():
    notification = notification_from_stripe_event(_stripe_event())

    assert notification.notification_id == "evt_1"
    assert notification.payment_reference == "pi_123"
    assert notification.raw_status == "succeeded"
    assert notification.occurred_at.year == 2023
    assert notification.is_payment_intent_event


def test_notification_from_unrelated_event_has_no_reference():
    event = _stripe_event(event_type="customer.created")
    notification = notification_from_stripe_event(event)

    assert notification.payment_reference is None
    assert not notification.is_payment_intent_event


def test_parse_webhook_without_secret_reads_json():
    payload = json.dumps(_stripe_event()).encode()
    event = parse_webhook_event(payload, signature=None, webhook_secret="")
    assert event["id"] == "evt_1"


def test_parse_webhook_rejects_garbage():
    with pytest.raises(ValueError):
        parse_webhook_event(b"not json", signature=None, webhook_secret="")
    with pytest.raises(ValueError):
        parse_webhook_event(b'{"hello": "world"}', signature=None, webhook_secret="")


def test_parse_webhook_with_secret_requires_valid_signature():
    payload = json.dumps(_stripe_event()).encode()
    with pytest.raises(stripe.SignatureVerificationError):
        parse_webhook_event(payload, signature=None, webhook_secret="whsec_test")
    with pytest.raises(stripe.SignatureVerificationError):
        parse_webhook_event(payload, signature="t=1,v1=deadbeef", webhook_secret="whsec_test")


class _Intent:
    id = "pi_abc"
    client_secret = "pi_abc_secret_xyz"


class _PaymentIntents:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def create_async(self, params=None, options=None):
        self.calls.append((params, options))
        if self.error:
            raise self.error
        return _Intent()


class _Client:
    def __init__(self, error=None):
        self.payment_intents = _PaymentIntents(error)


@pytest.mark.asyncio
async def test_stripe_gateway_creates_intent_in_minor_units():
    client = _Client()
    gateway = StripeGateway(client=client)

    result = await gateway.create_payment_intent(
        amount=Decimal("60.00"),
        currency="USD",
        metadata={"reservationId": "r-1", "userId": "u-1"},
        idempotency_key="reservation-r-1",
    )

    params, options = client.payment_intents.calls[0]
    assert params["amount"] == 6000
    assert params["currency"] == "usd"
    assert params["metadata"] == {"reservationId": "r-1", "userId": "u-1"}
    assert options == {"idempotency_key": "reservation-r-1"}
    assert result.external_reference == "pi_abc"
    assert result.client_token == "pi_abc_secret_xyz"


@pytest.mark.asyncio
async def test_stripe_errors_become_gateway_failures():
    gateway = StripeGateway(client=_Client(error=stripe.APIConnectionError("network down")))

    with pytest.raises(GatewayCommunicationError):
        await gateway.create_payment_intent(
            amount=Decimal("10.00"),
            currency="usd",
            metadata={},
        )


def test_gateway_notification_is_immutable():
    notification = GatewayNotification("n-1", "payment_intent.succeeded", "ref-1", "succeeded")
    with pytest.raises(AttributeError):
        notification.raw_status = "canceled"


def test_intent_created_event_reports_no_outcome():
    notification = notification_from_stripe_event(
        _stripe_event(event_type="payment_intent.created", status="requires_payment_method")
    )

    assert notification.is_payment_intent_event
    assert not notification.reports_payment_outcome
    assert notification_from_stripe_event(_stripe_event()).reports_payment_outcome
