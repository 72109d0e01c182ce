# src/infrastructure/repositories/event_repository.py

from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.exceptions import (
    EventNotFoundError,
    InsufficientInventoryError,
    InventoryOverflowError,
)
from src.domain.state_machine import EventStatus
from src.infrastructure.db.models import Event


def _status_literal(status: EventStatus):
    return literal(status, Event.__table__.c.status.type)


class EventRepository:
    """
    Inventory ledger. Counters are only ever changed through
    single conditional UPDATE statements so concurrent callers
    cannot read-modify-write past each other.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_existing(self, event_id: str) -> Event:
        event = await self.get_by_id(event_id)
        if not event:
            raise EventNotFoundError(event_id)
        return event

    async def create_event(
        self,
        title: str,
        unit_price: Decimal,
        total_tickets: int,
        location: str = "",
        starts_at: datetime | None = None,
    ) -> Event:
        if total_tickets < 0:
            raise ValueError("total_tickets must be non-negative")

        event = Event(
            title=title,
            location=location,
            starts_at=starts_at,
            unit_price=Decimal(unit_price),
            total_tickets=total_tickets,
            tickets_available=total_tickets,
            status=EventStatus.ACTIVE if total_tickets > 0 else EventStatus.SOLD_OUT,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def try_decrement(self, event_id: str, quantity: int) -> int:
        """
        UPDATE ... SET available = available - n WHERE available >= n

        Returns the remaining availability. Must run inside the
        transaction that confirms the reservation.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        remaining = Event.tickets_available - quantity
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.tickets_available >= quantity)
            .values(
                tickets_available=remaining,
                status=case(
                    (remaining == 0, _status_literal(EventStatus.SOLD_OUT)),
                    else_=_status_literal(EventStatus.ACTIVE),
                ),
            )
            .returning(Event.tickets_available)
            .execution_options(synchronize_session=False)
        )
        row = (await self.db.execute(stmt)).first()

        if row is None:
            await self.get_existing(event_id)
            raise InsufficientInventoryError(event_id, quantity)

        await self._reload(event_id)
        return row[0]

    async def release(self, event_id: str, quantity: int) -> int:
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.tickets_available + quantity <= Event.total_tickets)
            .values(
                tickets_available=Event.tickets_available + quantity,
                status=EventStatus.ACTIVE,
            )
            .returning(Event.tickets_available)
            .execution_options(synchronize_session=False)
        )
        row = (await self.db.execute(stmt)).first()

        if row is None:
            await self.get_existing(event_id)
            raise InventoryOverflowError(event_id, quantity)

        await self._reload(event_id)
        return row[0]

    async def _reload(self, event_id: str) -> None:
        # Bulk UPDATE bypasses the identity map; overwrite any stale copy.
        await self.db.get(Event, event_id, populate_existing=True)
