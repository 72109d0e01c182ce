from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.domain.state_machine import ReservationStatus


class ReservationRequest(BaseModel):
    user_id: str
    event_id: str
    number_of_tickets: int = Field(gt=0)


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    event_id: str
    number_of_tickets: int
    status: ReservationStatus
    amount: Decimal
    external_payment_reference: str | None = None
    created_at: datetime | None = None


class ReservationActionRequest(BaseModel):
    user_id: str


class PaymentIntentResponse(BaseModel):
    reservation_id: str
    external_reference: str
    client_secret: str


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
