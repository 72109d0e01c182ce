import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.exceptions import PaymentNotFoundError, PaymentReferenceConflictError
from src.domain.gateway_status import map_gateway_status
from src.domain.state_machine import PaymentStatus, PaymentStatusPolicy
from src.infrastructure.db.models import Payment
from src.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)


class PaymentRecordStore:
    """Keeps one payment attempt per reservation, keyed by the gateway reference."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.payment_repository = PaymentRepository(db)

    async def get_or_create_for_reservation(
        self,
        reservation_id: str,
        amount: Decimal,
        currency: str,
    ) -> Payment:
        existing = await self.payment_repository.get_for_reservation(reservation_id)
        if existing:
            return existing

        payment = await self.payment_repository.create_payment(
            reservation_id=reservation_id,
            amount=amount,
            currency=currency,
        )
        logger.info("Payment %s opened for reservation %s", payment.id, reservation_id)
        return payment

    async def attach_external_reference(
        self,
        payment_id: str,
        reference: str,
        client_token: str | None = None,
    ) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)

        if payment.external_payment_reference == reference:
            return payment
        if payment.external_payment_reference is not None:
            raise PaymentReferenceConflictError(
                payment_id,
                payment.external_payment_reference,
                reference,
            )

        payment.external_payment_reference = reference
        payment.client_token = client_token
        await self.db.flush()
        return payment

    async def get_by_reference(self, reference: str) -> Payment | None:
        return await self.payment_repository.get_by_reference(reference)

    async def get_for_reservation(self, reservation_id: str) -> Payment | None:
        return await self.payment_repository.get_for_reservation(reservation_id)

    async def apply_gateway_status(
        self,
        reference: str,
        raw_status: str | None,
        occurred_at: datetime | None = None,
    ) -> Payment:
        payment = await self.payment_repository.get_by_reference(reference, for_update=True)
        if not payment:
            raise PaymentNotFoundError(reference)

        new_status = map_gateway_status(raw_status)

        if payment.status == new_status:
            return payment
        if not PaymentStatusPolicy.can_apply(payment.status, new_status):
            logger.warning(
                "Ignoring %s for payment %s: already %s",
                new_status.value,
                payment.id,
                payment.status.value,
            )
            return payment

        payment.status = new_status
        payment.processed_at = occurred_at or datetime.now(timezone.utc)
        if new_status in (PaymentStatus.FAILED, PaymentStatus.CANCELED):
            payment.failure_reason = raw_status
        else:
            payment.failure_reason = None

        await self.db.flush()
        return payment
