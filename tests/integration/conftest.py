from decimal import Decimal

import pytest
from sqlalchemy import select

from src.application.notification_processor import NotificationProcessor
from src.application.payment_records import PaymentRecordStore
from src.application.payment_intent_service import PaymentIntentService
from src.domain.exceptions import GatewayCommunicationError
from src.domain.gateway_status import GatewayNotification, PaymentIntentResult
from src.infrastructure.db.models import Base, Event, Payment, ProcessedNotification, Reservation
from src.infrastructure.db.session import build_engine, build_session_factory, transaction
from src.infrastructure.repositories.event_repository import EventRepository


class FakeGateway:
    """Stands in for Stripe; issues ref-1, ref-2, ... in call order."""

    def __init__(self):
        self.calls = []
        self.fail_next = False

    async def create_payment_intent(self, amount, currency, metadata, idempotency_key=None):
        if self.fail_next:
            self.fail_next = False
            raise GatewayCommunicationError("gateway unreachable")

        self.calls.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        reference = f"ref-{len(self.calls)}"
        return PaymentIntentResult(
            external_reference=reference,
            client_token=f"{reference}_secret",
        )


@pytest.fixture
async def engine(tmp_path):
    # File database so concurrent sessions really use separate connections.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def intents(session_factory, gateway):
    return PaymentIntentService(session_factory, gateway, currency="usd")


@pytest.fixture
def processor(session_factory):
    return NotificationProcessor(session_factory)


@pytest.fixture
def create_event(session_factory):
    async def _create(total_tickets=10, unit_price="20.00", title="Jazz Night"):
        async with transaction(session_factory) as db:
            event = await EventRepository(db).create_event(
                title=title,
                unit_price=Decimal(unit_price),
                total_tickets=total_tickets,
            )
            return event.id

    return _create


@pytest.fixture
def load_event(session_factory):
    async def _load(event_id):
        async with session_factory() as db:
            return (await db.execute(select(Event).where(Event.id == event_id))).scalar_one()

    return _load


@pytest.fixture
def load_reservation(session_factory):
    async def _load(reservation_id):
        async with session_factory() as db:
            return (
                await db.execute(select(Reservation).where(Reservation.id == reservation_id))
            ).scalar_one()

    return _load


@pytest.fixture
def load_payment(session_factory):
    async def _load(reservation_id):
        async with session_factory() as db:
            return await PaymentRecordStore(db).get_for_reservation(reservation_id)

    return _load


@pytest.fixture
def snapshot(session_factory):
    """Full dump of the four core tables, for before/after comparisons."""

    async def _snapshot():
        state = {}
        async with session_factory() as db:
            for model in (Event, Reservation, Payment, ProcessedNotification):
                rows = (await db.execute(select(model).order_by(model.id))).scalars().all()
                state[model.__tablename__] = [
                    {column.key: getattr(row, column.key) for column in model.__table__.columns}
                    for row in rows
                ]
        return state

    return _snapshot


@pytest.fixture
def notification():
    def _build(reference, notification_id="n-1", raw_status="succeeded"):
        return GatewayNotification(
            notification_id=notification_id,
            type=f"payment_intent.{raw_status}",
            payment_reference=reference,
            raw_status=raw_status,
        )

    return _build
