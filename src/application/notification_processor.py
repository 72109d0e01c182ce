import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.application.payment_records import PaymentRecordStore
from src.application.reservation_service import ReservationService
from src.domain.exceptions import InsufficientInventoryError, InvalidReservationStateError
from src.domain.gateway_status import GatewayNotification, NotificationOutcome
from src.domain.state_machine import PaymentStatus
from src.infrastructure.db.session import transaction
from src.infrastructure.repositories.notification_repository import (
    ProcessedNotificationRepository,
)

logger = logging.getLogger(__name__)


class NotificationProcessor:
    """
    Applies gateway notifications exactly once.

    Delivery is at-least-once and unordered. The processed-notification
    ledger absorbs redeliveries and the payment status policy absorbs
    late, stale reports. Everything a notification changes is committed
    in one transaction together with its ledger row.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def handle(self, notification: GatewayNotification) -> NotificationOutcome:
        async with self.session_factory() as db:
            if await ProcessedNotificationRepository(db).exists(notification.notification_id):
                logger.info("Notification %s already processed, skipping", notification.notification_id)
                return NotificationOutcome.REPLAY

        try:
            async with transaction(self.session_factory) as db:
                return await self._apply(db, notification)
        except IntegrityError:
            # Lost the race against a concurrent delivery of the same notification.
            async with self.session_factory() as db:
                if await ProcessedNotificationRepository(db).exists(notification.notification_id):
                    logger.info(
                        "Notification %s applied concurrently, skipping",
                        notification.notification_id,
                    )
                    return NotificationOutcome.REPLAY
            raise

    async def _apply(
        self,
        db: AsyncSession,
        notification: GatewayNotification,
    ) -> NotificationOutcome:
        ledger = ProcessedNotificationRepository(db)

        if not notification.reports_payment_outcome or not notification.payment_reference:
            logger.debug(
                "Notification %s of type %s carries no payment outcome, ignoring",
                notification.notification_id,
                notification.type,
            )
            await ledger.record(notification.notification_id, notification.type)
            return NotificationOutcome.IGNORED

        payments = PaymentRecordStore(db)
        payment = await payments.get_by_reference(notification.payment_reference)
        if not payment:
            logger.warning(
                "Orphan notification %s (%s): no payment with reference %s",
                notification.notification_id,
                notification.type,
                notification.payment_reference,
            )
            return NotificationOutcome.ORPHAN

        payment = await payments.apply_gateway_status(
            notification.payment_reference,
            notification.raw_status,
            notification.occurred_at,
        )

        outcome = NotificationOutcome.APPLIED
        if payment.status == PaymentStatus.SUCCEEDED:
            try:
                await ReservationService(db).confirm_from_payment(
                    payment.reservation_id,
                    notification.payment_reference,
                )
            except InsufficientInventoryError as exc:
                # Money captured, seat gone. Payment stays Succeeded, reservation stays Pending.
                logger.critical(
                    "reconciliation_gap: payment %s (reference %s) succeeded but reservation %s "
                    "cannot be confirmed: %s. Manual refund or overbooking required.",
                    payment.id,
                    notification.payment_reference,
                    payment.reservation_id,
                    exc,
                )
                outcome = NotificationOutcome.RECONCILIATION_REQUIRED
            except InvalidReservationStateError as exc:
                logger.critical(
                    "reconciliation_gap: payment %s (reference %s) succeeded for reservation %s "
                    "which can no longer be confirmed: %s",
                    payment.id,
                    notification.payment_reference,
                    payment.reservation_id,
                    exc,
                )
                raise

        await ledger.record(notification.notification_id, notification.type)

        logger.info(
            "Notification %s applied: payment %s is %s",
            notification.notification_id,
            payment.id,
            payment.status.value,
        )
        return outcome
