from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from src.domain.state_machine import PaymentStatus


# The only place where gateway vocabulary is known.
_GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "processing": PaymentStatus.PROCESSING,
    "requires_payment_method": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
}


def map_gateway_status(raw_status: str | None) -> PaymentStatus:
    """
    Translate a raw gateway status into the internal enum.
    Unknown or missing values fall back to Pending.
    """
    if not raw_status:
        return PaymentStatus.PENDING
    return _GATEWAY_STATUS_MAP.get(raw_status.strip().lower(), PaymentStatus.PENDING)


# Sent when the intent is opened; its requires_payment_method status is not an attempt outcome.
NON_OUTCOME_NOTIFICATION_TYPES = frozenset({"payment_intent.created"})


@dataclass(frozen=True)
class GatewayNotification:
    """A payment gateway callback that already passed transport verification."""

    notification_id: str
    type: str
    payment_reference: str | None
    raw_status: str | None
    occurred_at: datetime | None = None

    @property
    def is_payment_intent_event(self) -> bool:
        return self.type.startswith("payment_intent.")

    @property
    def reports_payment_outcome(self) -> bool:
        return self.is_payment_intent_event and self.type not in NON_OUTCOME_NOTIFICATION_TYPES


@dataclass(frozen=True)
class PaymentIntentResult:
    external_reference: str
    client_token: str


class NotificationOutcome(str, Enum):
    APPLIED = "APPLIED"
    REPLAY = "REPLAY"
    ORPHAN = "ORPHAN"
    IGNORED = "IGNORED"
    RECONCILIATION_REQUIRED = "RECONCILIATION_REQUIRED"
