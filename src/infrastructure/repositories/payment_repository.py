# src/infrastructure/repositories/payment_repository.py

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.state_machine import PaymentStatus
from src.infrastructure.db.models import Payment


class PaymentRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, payment_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_by_reference(
        self,
        reference: str,
        *,
        for_update: bool = False,
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.external_payment_reference == reference)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_for_reservation(self, reservation_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.reservation_id == reservation_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def create_payment(
        self,
        reservation_id: str,
        amount: Decimal,
        currency: str,
    ) -> Payment:
        payment = Payment(
            reservation_id=reservation_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment
