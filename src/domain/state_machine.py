# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import InvalidReservationStateError


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class EventStatus(str, Enum):
    ACTIVE = "Active"
    SOLD_OUT = "SoldOut"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"


# Reservations in these states do not count against the one-per-event rule.
INACTIVE_RESERVATION_STATUSES = (
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
)

TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
)


class ReservationStateMachine:
    """
    Central lifecycle controller for reservation transitions.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[ReservationStatus, Set[ReservationStatus]] = {
        ReservationStatus.PENDING: {
            ReservationStatus.CONFIRMED,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
        },
        ReservationStatus.CONFIRMED: set(),
        ReservationStatus.CANCELLED: set(),
        ReservationStatus.EXPIRED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: ReservationStatus,
        to_status: ReservationStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: ReservationStatus,
        to_status: ReservationStatus,
    ) -> None:
        """
        Raises InvalidReservationStateError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidReservationStateError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: ReservationStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: ReservationStatus
    ) -> Set[ReservationStatus]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: ReservationStatus) -> None:
        if not isinstance(status, ReservationStatus):
            raise TypeError(
                f"Expected ReservationStatus, got {type(status)}"
            )


class PaymentStatusPolicy:
    """
    Payment attempts only ever move forward. Succeeded, Failed and
    Canceled are absorbing: once one is recorded, every later report
    carrying a different status is dropped.
    """

    @staticmethod
    def is_terminal(status: PaymentStatus) -> bool:
        return status in TERMINAL_PAYMENT_STATUSES

    @classmethod
    def can_apply(
        cls,
        current: PaymentStatus,
        incoming: PaymentStatus,
    ) -> bool:
        if not isinstance(current, PaymentStatus) or not isinstance(incoming, PaymentStatus):
            raise TypeError("Expected PaymentStatus values")

        if current == incoming:
            return True
        return not cls.is_terminal(current)
