import logging

import pytest
from sqlalchemy import func, select

from src.application.reservation_service import ReservationService
from src.domain.exceptions import InvalidReservationStateError
from src.domain.gateway_status import GatewayNotification, NotificationOutcome
from src.domain.state_machine import EventStatus, PaymentStatus, ReservationStatus
from src.infrastructure.db.models import ProcessedNotification
from src.infrastructure.db.session import transaction


pytestmark = pytest.mark.integration


@pytest.fixture
def reserve_and_pay(session_factory, create_event, intents):
    """Event with `total_tickets`, a Pending reservation and an open intent."""

    async def _setup(total_tickets=10, quantity=3, check_availability=True):
        event_id = await create_event(total_tickets=total_tickets)
        async with transaction(session_factory) as db:
            reservation = await ReservationService(db).create_reservation(
                "user-1",
                event_id,
                quantity,
                check_availability=check_availability,
            )
        intent = await intents.request_payment_intent(reservation.id, "user-1")
        return event_id, reservation.id, intent.external_reference

    return _setup


async def _ledger_size(session_factory):
    async with session_factory() as db:
        return (
            await db.execute(select(func.count()).select_from(ProcessedNotification))
        ).scalar_one()


async def test_successful_payment_confirms_reservation(
    processor, notification, reserve_and_pay, load_event, load_reservation, load_payment
):
    event_id, reservation_id, reference = await reserve_and_pay(total_tickets=10, quantity=3)
    assert reference == "ref-1"

    outcome = await processor.handle(notification(reference))

    assert outcome == NotificationOutcome.APPLIED
    assert (await load_reservation(reservation_id)).status == ReservationStatus.CONFIRMED
    payment = await load_payment(reservation_id)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.processed_at is not None
    assert (await load_event(event_id)).tickets_available == 7


async def test_redelivered_notification_changes_nothing(
    processor, notification, reserve_and_pay, snapshot, session_factory
):
    await reserve_and_pay()

    assert await processor.handle(notification("ref-1", notification_id="n-1")) == NotificationOutcome.APPLIED
    after_first = await snapshot()

    assert await processor.handle(notification("ref-1", notification_id="n-1")) == NotificationOutcome.REPLAY
    assert await snapshot() == after_first
    assert await _ledger_size(session_factory) == 1


async def test_new_notification_for_confirmed_payment_is_harmless(
    processor, notification, reserve_and_pay, load_event
):
    event_id, _, reference = await reserve_and_pay(total_tickets=10, quantity=3)

    await processor.handle(notification(reference, notification_id="n-1"))
    outcome = await processor.handle(notification(reference, notification_id="n-2"))

    assert outcome == NotificationOutcome.APPLIED
    assert (await load_event(event_id)).tickets_available == 7


async def test_late_processing_report_does_not_downgrade(
    processor, notification, reserve_and_pay, load_payment, load_reservation
):
    _, reservation_id, reference = await reserve_and_pay()

    await processor.handle(notification(reference, notification_id="n-1", raw_status="succeeded"))
    await processor.handle(notification(reference, notification_id="n-2", raw_status="processing"))

    assert (await load_payment(reservation_id)).status == PaymentStatus.SUCCEEDED
    assert (await load_reservation(reservation_id)).status == ReservationStatus.CONFIRMED


async def test_late_failure_does_not_overwrite_cancellation(
    processor, notification, reserve_and_pay, load_payment
):
    _, reservation_id, reference = await reserve_and_pay()

    await processor.handle(notification(reference, notification_id="n-1", raw_status="canceled"))
    await processor.handle(notification(reference, notification_id="n-2", raw_status="requires_payment_method"))

    payment = await load_payment(reservation_id)
    assert payment.status == PaymentStatus.CANCELED
    assert payment.failure_reason == "canceled"


async def test_success_after_cancellation_takes_no_inventory(
    processor, notification, reserve_and_pay, load_event, load_payment, load_reservation
):
    event_id, reservation_id, reference = await reserve_and_pay(total_tickets=10, quantity=3)

    await processor.handle(notification(reference, notification_id="n-1", raw_status="canceled"))
    await processor.handle(notification(reference, notification_id="n-2", raw_status="succeeded"))

    assert (await load_payment(reservation_id)).status == PaymentStatus.CANCELED
    assert (await load_reservation(reservation_id)).status == ReservationStatus.PENDING
    assert (await load_event(event_id)).tickets_available == 10


async def test_failed_payment_stays_failed(
    processor, notification, reserve_and_pay, load_payment, load_reservation
):
    _, reservation_id, reference = await reserve_and_pay()

    await processor.handle(notification(reference, notification_id="n-1", raw_status="requires_payment_method"))
    await processor.handle(notification(reference, notification_id="n-2", raw_status="succeeded"))

    payment = await load_payment(reservation_id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "requires_payment_method"
    assert (await load_reservation(reservation_id)).status == ReservationStatus.PENDING


async def test_intent_created_notification_does_not_fail_the_payment(
    processor, notification, reserve_and_pay, load_payment, load_reservation, session_factory
):
    _, reservation_id, reference = await reserve_and_pay()

    outcome = await processor.handle(
        GatewayNotification(
            notification_id="n-created",
            type="payment_intent.created",
            payment_reference=reference,
            raw_status="requires_payment_method",
        )
    )

    assert outcome == NotificationOutcome.IGNORED
    assert (await load_payment(reservation_id)).status == PaymentStatus.PENDING
    assert await _ledger_size(session_factory) == 1

    await processor.handle(notification(reference, notification_id="n-1", raw_status="succeeded"))
    assert (await load_reservation(reservation_id)).status == ReservationStatus.CONFIRMED


async def test_orphan_notification_is_not_recorded(processor, notification, snapshot, session_factory, caplog):
    before = await snapshot()

    with caplog.at_level(logging.WARNING):
        outcome = await processor.handle(notification("ref-unknown"))

    assert outcome == NotificationOutcome.ORPHAN
    assert "Orphan notification" in caplog.text
    assert await snapshot() == before
    assert await _ledger_size(session_factory) == 0


async def test_unrelated_notification_is_recorded_and_ignored(processor, session_factory):
    outcome = await processor.handle(
        GatewayNotification(
            notification_id="evt-customer",
            type="customer.created",
            payment_reference=None,
            raw_status=None,
        )
    )

    assert outcome == NotificationOutcome.IGNORED
    assert await _ledger_size(session_factory) == 1
    assert await processor.handle(
        GatewayNotification("evt-customer", "customer.created", None, None)
    ) == NotificationOutcome.REPLAY


async def test_sold_out_event_raises_reconciliation_gap(
    processor, notification, reserve_and_pay, load_event, load_payment, load_reservation,
    session_factory, caplog,
):
    event_id, reservation_id, reference = await reserve_and_pay(
        total_tickets=2,
        quantity=3,
        check_availability=False,
    )

    with caplog.at_level(logging.CRITICAL):
        outcome = await processor.handle(notification(reference))

    assert outcome == NotificationOutcome.RECONCILIATION_REQUIRED
    assert any(
        record.levelno == logging.CRITICAL and "reconciliation_gap" in record.getMessage()
        for record in caplog.records
    )

    assert (await load_payment(reservation_id)).status == PaymentStatus.SUCCEEDED
    assert (await load_reservation(reservation_id)).status == ReservationStatus.PENDING
    event = await load_event(event_id)
    assert event.tickets_available == 2
    assert event.status == EventStatus.ACTIVE
    assert await _ledger_size(session_factory) == 1


async def test_payment_for_cancelled_reservation_rolls_back(
    processor, notification, reserve_and_pay, load_event, load_payment, load_reservation,
    session_factory, caplog,
):
    event_id, reservation_id, reference = await reserve_and_pay(total_tickets=10, quantity=3)

    async with transaction(session_factory) as db:
        await ReservationService(db).cancel_reservation(reservation_id, "user-1")

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(InvalidReservationStateError):
            await processor.handle(notification(reference))

    assert "reconciliation_gap" in caplog.text
    assert (await load_payment(reservation_id)).status == PaymentStatus.PENDING
    assert (await load_reservation(reservation_id)).status == ReservationStatus.CANCELLED
    assert (await load_event(event_id)).tickets_available == 10
    assert await _ledger_size(session_factory) == 0


async def test_cancel_refused_after_payment_succeeded(
    processor, notification, reserve_and_pay, session_factory, load_reservation
):
    _, reservation_id, reference = await reserve_and_pay(total_tickets=2, quantity=3, check_availability=False)
    await processor.handle(notification(reference))

    with pytest.raises(InvalidReservationStateError):
        async with transaction(session_factory) as db:
            await ReservationService(db).cancel_reservation(reservation_id, "user-1")

    assert (await load_reservation(reservation_id)).status == ReservationStatus.PENDING
