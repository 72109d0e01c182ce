# src/infrastructure/repositories/notification_repository.py

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.db.models import ProcessedNotification


class ProcessedNotificationRepository:
    """Dedup ledger. Rows are only ever inserted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists(self, notification_id: str) -> bool:
        stmt = select(
            exists().where(ProcessedNotification.notification_id == notification_id)
        )
        return bool((await self.db.execute(stmt)).scalar())

    async def record(self, notification_id: str, notification_type: str) -> ProcessedNotification:
        entry = ProcessedNotification(
            notification_id=notification_id,
            type=notification_type,
        )
        self.db.add(entry)
        # Flush now so a concurrent duplicate trips the unique constraint here.
        await self.db.flush()
        return entry
