import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.exceptions import (
    DuplicateReservationError,
    InsufficientInventoryError,
    InvalidReservationStateError,
    ReservationNotFoundError,
    UnauthorizedReservationAccessError,
)
from src.domain.state_machine import (
    PaymentStatus,
    ReservationStateMachine,
    ReservationStatus,
)
from src.infrastructure.db.models import Reservation
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.payment_repository import PaymentRepository
from src.infrastructure.repositories.reservation_repository import ReservationRepository

logger = logging.getLogger(__name__)


class ReservationService:
    """
    Application service owning the reservation lifecycle.

    All methods run inside the caller's session; the caller decides
    where the transaction begins and ends.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.reservation_repository = ReservationRepository(db)
        self.event_repository = EventRepository(db)
        self.payment_repository = PaymentRepository(db)

    async def has_active_reservation(self, user_id: str, event_id: str) -> bool:
        return await self.reservation_repository.has_active_reservation(user_id, event_id)

    async def create_reservation(
        self,
        user_id: str,
        event_id: str,
        quantity: int,
        check_availability: bool = True,
    ) -> Reservation:
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        event = await self.event_repository.get_existing(event_id)

        if await self.has_active_reservation(user_id, event_id):
            raise DuplicateReservationError(user_id, event_id)

        # Non-binding: capacity is only taken when the payment confirms.
        if check_availability and event.tickets_available < quantity:
            raise InsufficientInventoryError(event_id, quantity)

        reservation = await self.reservation_repository.create_reservation(
            user_id=user_id,
            event_id=event_id,
            number_of_tickets=quantity,
            amount=event.unit_price * quantity,
        )
        logger.info(
            "Reservation %s created for user %s on event %s (%s tickets)",
            reservation.id,
            user_id,
            event_id,
            quantity,
        )
        return reservation

    async def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.reservation_repository.get_by_id(reservation_id)
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def get_owned_reservation(
        self,
        reservation_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> Reservation:
        reservation = await self.reservation_repository.get_by_id(
            reservation_id,
            for_update=for_update,
        )
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        if reservation.user_id != user_id:
            raise UnauthorizedReservationAccessError(reservation_id, user_id)
        return reservation

    async def cancel_reservation(
        self,
        reservation_id: str,
        user_id: str | None = None,
    ) -> Reservation:
        if user_id is None:
            reservation = await self.reservation_repository.get_by_id(
                reservation_id,
                for_update=True,
            )
            if not reservation:
                raise ReservationNotFoundError(reservation_id)
        else:
            reservation = await self.get_owned_reservation(
                reservation_id,
                user_id,
                for_update=True,
            )

        ReservationStateMachine.validate_transition(
            reservation.status,
            ReservationStatus.CANCELLED,
        )

        payment = await self.payment_repository.get_for_reservation(reservation.id)
        if payment and payment.status == PaymentStatus.SUCCEEDED:
            # Money was captured; this one goes through reconciliation, not cancel.
            raise InvalidReservationStateError(
                from_state=f"{reservation.status.value} (payment {payment.status.value})",
                to_state=ReservationStatus.CANCELLED.value,
            )

        await self._transition(reservation, ReservationStatus.CANCELLED)
        # Pending reservations never consumed inventory, nothing to release.
        logger.info("Reservation %s cancelled", reservation.id)
        return reservation

    async def confirm_from_payment(
        self,
        reservation_id: str,
        external_payment_reference: str,
    ) -> Reservation:
        """
        Single choke point for confirmation. Only the notification
        processor calls this, inside its own transaction.

        Raises:
            ReservationNotFoundError: the payment points at a missing reservation.
            InvalidReservationStateError: the reservation is no longer Pending.
            InsufficientInventoryError: the event cannot cover the tickets.
        """
        reservation = await self.reservation_repository.get_by_id(
            reservation_id,
            for_update=True,
        )
        if not reservation:
            raise ReservationNotFoundError(reservation_id)

        if reservation.status == ReservationStatus.CONFIRMED:
            logger.info(
                "Reservation %s already confirmed, ignoring repeat confirmation",
                reservation.id,
            )
            return reservation

        ReservationStateMachine.validate_transition(
            reservation.status,
            ReservationStatus.CONFIRMED,
        )

        # Nothing is written before the decrement, so a sold-out event
        # leaves the enclosing transaction untouched.
        remaining = await self.event_repository.try_decrement(
            reservation.event_id,
            reservation.number_of_tickets,
        )
        await self._transition(reservation, ReservationStatus.CONFIRMED)

        if reservation.external_payment_reference is None:
            await self.reservation_repository.set_payment_reference(
                reservation,
                external_payment_reference,
            )
        elif reservation.external_payment_reference != external_payment_reference:
            logger.warning(
                "Reservation %s is bound to %s but was paid through %s",
                reservation.id,
                reservation.external_payment_reference,
                external_payment_reference,
            )

        logger.info(
            "Reservation %s confirmed, %s tickets left on event %s",
            reservation.id,
            remaining,
            reservation.event_id,
        )
        return reservation

    async def expire_stale_reservations(
        self,
        older_than: timedelta,
        now: datetime | None = None,
    ) -> int:
        """
        Moves Pending reservations that never obtained a payment
        intent to Expired. Returns how many were expired.
        """
        cutoff = (now or datetime.now(timezone.utc)) - older_than
        expired = await self.reservation_repository.expire_pending_before(cutoff)
        if expired:
            logger.info("Expired %s pending reservations created before %s", expired, cutoff)
        return expired

    async def _transition(
        self,
        reservation: Reservation,
        to_status: ReservationStatus,
    ) -> None:
        from_status = reservation.status
        ReservationStateMachine.validate_transition(from_status, to_status)

        changed = await self.reservation_repository.compare_and_set_status(
            reservation,
            expected=from_status,
            new_status=to_status,
        )
        if not changed:
            # Someone else moved it first; reservation now holds the fresh status.
            raise InvalidReservationStateError(
                from_state=reservation.status.value,
                to_state=to_status.value,
            )
