import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from src.infrastructure.db.models import Base, Event
from src.infrastructure.db.session import SessionLocal, engine, transaction
from src.infrastructure.repositories.event_repository import EventRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


async def seed_events(db) -> None:
    event_defs = [
        {
            "title": "Symphony Under the Stars",
            "location": "Teatro Colon, Buenos Aires",
            "starts_at": _dt(days_from_now=10, hour=21, minute=0),
            "unit_price": Decimal("45.00"),
            "total_tickets": 400,
        },
        {
            "title": "Indie Rock Night",
            "location": "Niceto Club, Buenos Aires",
            "starts_at": _dt(days_from_now=15, hour=22, minute=30),
            "unit_price": Decimal("25.50"),
            "total_tickets": 120,
        },
        {
            "title": "Tech Meetup: Async Python",
            "location": "Centro Cultural Recoleta",
            "starts_at": _dt(days_from_now=3, hour=19, minute=0),
            "unit_price": Decimal("10.00"),
            "total_tickets": 60,
        },
    ]

    repository = EventRepository(db)
    for item in event_defs:
        existing = (
            await db.execute(select(Event).where(Event.title == item["title"]))
        ).scalar_one_or_none()
        if existing:
            # Counters are owned by the ledger; only metadata is refreshed.
            existing.location = item["location"]
            existing.starts_at = item["starts_at"]
            continue
        await repository.create_event(**item)


async def main() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with transaction(SessionLocal) as db:
        await seed_events(db)

    await engine.dispose()
    print("Seeded demo events.")


if __name__ == "__main__":
    asyncio.run(main())
