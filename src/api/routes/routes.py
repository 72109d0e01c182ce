import logging
from typing import AsyncIterator

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.schemas.schemas import (
    PaymentIntentResponse,
    ReservationActionRequest,
    ReservationRequest,
    ReservationResponse,
    WebhookAck,
)
from src.application.notification_processor import NotificationProcessor
from src.application.payment_intent_service import PaymentIntentService
from src.application.reservation_service import ReservationService
from src.infrastructure.db.session import get_session_factory, transaction
from src.infrastructure.gateway.stripe_gateway import (
    PaymentGateway,
    StripeGateway,
    notification_from_stripe_event,
    parse_webhook_event,
)


router = APIRouter()
logger = logging.getLogger(__name__)


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncIterator[AsyncSession]:
    async with transaction(session_factory) as db:
        yield db


def get_payment_gateway() -> PaymentGateway:
    return StripeGateway()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/reservations", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    request: ReservationRequest,
    db: AsyncSession = Depends(get_db),
):
    reservation = await ReservationService(db).create_reservation(
        user_id=request.user_id,
        event_id=request.event_id,
        quantity=request.number_of_tickets,
    )
    return ReservationResponse.model_validate(reservation)


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str,
    db: AsyncSession = Depends(get_db),
):
    reservation = await ReservationService(db).get_reservation(reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: str,
    request: ReservationActionRequest,
    db: AsyncSession = Depends(get_db),
):
    reservation = await ReservationService(db).cancel_reservation(
        reservation_id,
        user_id=request.user_id,
    )
    return ReservationResponse.model_validate(reservation)


@router.post("/reservations/{reservation_id}/payment-intent", response_model=PaymentIntentResponse)
async def request_payment_intent(
    reservation_id: str,
    request: ReservationActionRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await PaymentIntentService(session_factory, gateway).request_payment_intent(
        reservation_id,
        request.user_id,
    )
    return PaymentIntentResponse(
        reservation_id=reservation_id,
        external_reference=result.external_reference,
        client_secret=result.client_token,
    )


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    payload = await request.body()
    if not payload.strip():
        logger.warning("Stripe webhook received with empty body.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty payload")

    try:
        event = parse_webhook_event(payload, request.headers.get("Stripe-Signature"))
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook rejected: invalid signature.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe signature")

    notification = notification_from_stripe_event(event)

    try:
        outcome = await NotificationProcessor(session_factory).handle(notification)
    except Exception:
        # Non-2xx makes Stripe redeliver later.
        logger.exception("Failed to process Stripe notification %s", notification.notification_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Notification processing failed",
        )

    return WebhookAck(outcome=outcome.value)
