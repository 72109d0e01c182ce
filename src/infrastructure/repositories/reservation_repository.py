# src/infrastructure/repositories/reservation_repository.py

from datetime import datetime
from decimal import Decimal

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.state_machine import INACTIVE_RESERVATION_STATUSES, ReservationStatus
from src.infrastructure.db.models import Reservation


class ReservationRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(
        self,
        reservation_id: str,
        *,
        for_update: bool = False,
    ) -> Reservation | None:

        stmt = select(Reservation).where(Reservation.id == reservation_id)
        if for_update:
            # SELECT ... FOR UPDATE serializes confirm/cancel on PostgreSQL.
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def has_active_reservation(
        self,
        user_id: str,
        event_id: str,
    ) -> bool:
        stmt = select(
            exists().where(
                Reservation.user_id == user_id,
                Reservation.event_id == event_id,
                Reservation.status.not_in(INACTIVE_RESERVATION_STATUSES),
            )
        )
        return bool((await self.db.execute(stmt)).scalar())

    async def create_reservation(
        self,
        user_id: str,
        event_id: str,
        number_of_tickets: int,
        amount: Decimal,
    ) -> Reservation:

        reservation = Reservation(
            user_id=user_id,
            event_id=event_id,
            number_of_tickets=number_of_tickets,
            amount=amount,
            status=ReservationStatus.PENDING,
        )

        self.db.add(reservation)
        await self.db.flush()
        return reservation

    async def compare_and_set_status(
        self,
        reservation: Reservation,
        expected: ReservationStatus,
        new_status: ReservationStatus,
    ) -> bool:
        """
        Moves the reservation to new_status only if the stored status
        is still `expected`. Returns False when another transaction won.
        """
        stmt = (
            update(Reservation)
            .where(Reservation.id == reservation.id)
            .where(Reservation.status == expected)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.refresh(reservation)
        return result.rowcount == 1

    async def bind_payment_reference(
        self,
        reservation: Reservation,
        reference: str,
    ) -> bool:
        stmt = (
            update(Reservation)
            .where(Reservation.id == reservation.id)
            .where(Reservation.status == ReservationStatus.PENDING)
            .where(
                (Reservation.external_payment_reference.is_(None))
                | (Reservation.external_payment_reference == reference)
            )
            .values(external_payment_reference=reference)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.refresh(reservation)
        return result.rowcount == 1

    async def set_payment_reference(
        self,
        reservation: Reservation,
        reference: str,
    ) -> None:
        reservation.external_payment_reference = reference
        await self.db.flush()

    async def expire_pending_before(self, cutoff: datetime) -> int:
        stmt = (
            update(Reservation)
            .where(Reservation.status == ReservationStatus.PENDING)
            .where(Reservation.external_payment_reference.is_(None))
            .where(Reservation.created_at < cutoff)
            .values(status=ReservationStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
