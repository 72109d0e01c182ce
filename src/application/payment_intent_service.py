import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.application.payment_records import PaymentRecordStore
from src.application.reservation_service import ReservationService
from src.domain.exceptions import ReservationNotPayableError
from src.domain.gateway_status import PaymentIntentResult
from src.domain.state_machine import ReservationStatus
from src.infrastructure import settings
from src.infrastructure.db.session import transaction
from src.infrastructure.gateway.stripe_gateway import PaymentGateway
from src.infrastructure.repositories.reservation_repository import ReservationRepository

logger = logging.getLogger(__name__)


class PaymentIntentService:
    """
    Opens (or re-opens) the payment attempt for a reservation.

    The gateway call sits between two short transactions so no
    database lock is held while waiting on the network.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        currency: str | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.currency = (currency or settings.PAYMENT_CURRENCY).lower()

    async def request_payment_intent(
        self,
        reservation_id: str,
        user_id: str,
    ) -> PaymentIntentResult:
        try:
            payment_id, amount, existing = await self._open_payment(reservation_id, user_id)
        except IntegrityError:
            # A concurrent request created the payment row first; reuse it.
            logger.info("Concurrent intent request for reservation %s, retrying", reservation_id)
            payment_id, amount, existing = await self._open_payment(reservation_id, user_id)

        if existing is not None:
            return existing

        result = await self.gateway.create_payment_intent(
            amount=amount,
            currency=self.currency,
            metadata={"reservationId": reservation_id, "userId": user_id},
            idempotency_key=f"reservation-{reservation_id}",
        )

        async with transaction(self.session_factory) as db:
            reservation_repository = ReservationRepository(db)
            reservation = await reservation_repository.get_by_id(reservation_id, for_update=True)

            if not await reservation_repository.bind_payment_reference(
                reservation,
                result.external_reference,
            ):
                logger.warning(
                    "Reservation %s left Pending (%s) while intent %s was created; not binding it",
                    reservation_id,
                    reservation.status.value,
                    result.external_reference,
                )
                raise ReservationNotPayableError(reservation_id, reservation.status.value)

            await PaymentRecordStore(db).attach_external_reference(
                payment_id,
                result.external_reference,
                result.client_token,
            )

        logger.info(
            "Payment intent %s created for reservation %s",
            result.external_reference,
            reservation_id,
        )
        return result

    async def _open_payment(self, reservation_id: str, user_id: str):
        async with transaction(self.session_factory) as db:
            reservation = await ReservationService(db).get_owned_reservation(
                reservation_id,
                user_id,
            )
            if reservation.status != ReservationStatus.PENDING:
                raise ReservationNotPayableError(reservation.id, reservation.status.value)

            payment = await PaymentRecordStore(db).get_or_create_for_reservation(
                reservation.id,
                reservation.amount,
                self.currency,
            )

            existing = None
            if payment.external_payment_reference and payment.client_token:
                existing = PaymentIntentResult(
                    external_reference=payment.external_payment_reference,
                    client_token=payment.client_token,
                )
            return payment.id, payment.amount, existing
