import asyncio
import logging
from datetime import timedelta

from src.application.reservation_service import ReservationService
from src.infrastructure import settings
from src.infrastructure.db.session import SessionLocal, engine, transaction

logger = logging.getLogger("expire_reservations")


async def main() -> int:
    ttl_minutes = settings.RESERVATION_PENDING_TTL_MINUTES
    if ttl_minutes <= 0:
        logger.info("RESERVATION_PENDING_TTL_MINUTES is not set; nothing to expire.")
        return 0

    async with transaction(SessionLocal) as db:
        expired = await ReservationService(db).expire_stale_reservations(
            older_than=timedelta(minutes=ttl_minutes),
        )

    await engine.dispose()
    return expired


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    count = asyncio.run(main())
    print(f"Expired {count} pending reservations.")
