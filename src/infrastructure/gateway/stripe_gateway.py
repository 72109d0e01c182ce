# src/infrastructure/gateway/stripe_gateway.py

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Protocol

import stripe

from src.domain.exceptions import GatewayCommunicationError
from src.domain.gateway_status import GatewayNotification, PaymentIntentResult
from src.infrastructure import settings

logger = logging.getLogger(__name__)

# Stripe charges these currencies in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset({"jpy", "krw", "vnd", "clp", "pyg", "ugx", "xaf", "xof"})


class PaymentGateway(Protocol):
    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult:
        ...


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    """Creates PaymentIntents through Stripe's async client."""

    def __init__(self, api_key: str | None = None, client: stripe.StripeClient | None = None):
        key = api_key or settings.STRIPE_SECRET_KEY
        if client is None and not key:
            raise GatewayCommunicationError(
                "Stripe secret key not configured. Set STRIPE_SECRET_KEY."
            )
        self._client = client or stripe.StripeClient(key, http_client=stripe.HTTPXClient())

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult:
        params = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        options = {"idempotency_key": idempotency_key} if idempotency_key else None

        try:
            intent = await self._client.payment_intents.create_async(
                params=params,
                options=options,
            )
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe rejected PaymentIntent creation (metadata=%s): %s",
                metadata,
                exc,
            )
            raise GatewayCommunicationError(
                f"Payment gateway error: {exc.user_message or exc}"
            ) from exc

        return PaymentIntentResult(
            external_reference=intent.id,
            client_token=intent.client_secret,
        )


def parse_webhook_event(
    payload: bytes,
    signature: str | None,
    webhook_secret: str | None = None,
) -> Mapping[str, Any]:
    """
    Verifies the Stripe-Signature header when a secret is configured.

    Raises:
        stripe.SignatureVerificationError: signature present but invalid.
        ValueError: payload is not a Stripe event.
    """
    secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
    if secret:
        if not signature:
            raise stripe.SignatureVerificationError("Missing Stripe-Signature header", signature, payload)
        return stripe.Webhook.construct_event(payload, signature, secret)

    logger.warning("Stripe webhook accepted without signature verification (no webhook secret set).")
    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid webhook payload") from exc
    if not isinstance(event, dict) or "id" not in event or "type" not in event:
        raise ValueError("Invalid webhook payload")
    return event


def notification_from_stripe_event(event: Mapping[str, Any]) -> GatewayNotification:
    event_type = event["type"]
    data_object = (event.get("data") or {}).get("object") or {}

    reference = None
    raw_status = None
    if event_type.startswith("payment_intent."):
        reference = data_object.get("id")
        raw_status = data_object.get("status")

    created = event.get("created")
    occurred_at = datetime.fromtimestamp(created, tz=timezone.utc) if created else None

    return GatewayNotification(
        notification_id=event["id"],
        type=event_type,
        payment_reference=reference,
        raw_status=raw_status,
        occurred_at=occurred_at,
    )
