from enum import Enum


class ErrorCode(str, Enum):
    DUPLICATE_RESERVATION = "DUPLICATE_RESERVATION"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    INVENTORY_OVERFLOW = "INVENTORY_OVERFLOW"
    INVALID_RESERVATION_STATE = "INVALID_RESERVATION_STATE"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    PAYMENT_REFERENCE_CONFLICT = "PAYMENT_REFERENCE_CONFLICT"
    UNAUTHORIZED_RESERVATION_ACCESS = "UNAUTHORIZED_RESERVATION_ACCESS"
    GATEWAY_COMMUNICATION_FAILURE = "GATEWAY_COMMUNICATION_FAILURE"


class ReservationEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the reservation engine.

    Every subclass carries a stable error code and the
    HTTP status the API layer should answer with.
    """

    code: ErrorCode
    status_code: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class DuplicateReservationError(ReservationEngineError):
    """Raised when the user already holds an active reservation for the event."""

    code = ErrorCode.DUPLICATE_RESERVATION
    status_code = 409

    def __init__(self, user_id: str, event_id: str):
        self.user_id = user_id
        self.event_id = event_id
        super().__init__(
            f"User {user_id} already has an active reservation for event {event_id}"
        )


class InsufficientInventoryError(ReservationEngineError):
    """Raised when fewer tickets are available than requested."""

    code = ErrorCode.INSUFFICIENT_INVENTORY
    status_code = 409

    def __init__(self, event_id: str, requested: int):
        self.event_id = event_id
        self.requested = requested
        super().__init__(
            f"Not enough tickets available for event {event_id} (requested {requested})"
        )


class InventoryOverflowError(ReservationEngineError):
    """Raised when a release would push availability above capacity."""

    code = ErrorCode.INVENTORY_OVERFLOW
    status_code = 409

    def __init__(self, event_id: str, quantity: int):
        self.event_id = event_id
        self.quantity = quantity
        super().__init__(
            f"Releasing {quantity} tickets would exceed capacity of event {event_id}"
        )


class InvalidReservationStateError(ReservationEngineError):
    """
    Raised when an illegal reservation state transition is attempted.
    """

    code = ErrorCode.INVALID_RESERVATION_STATE
    status_code = 409

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ReservationNotPayableError(InvalidReservationStateError):
    """
    Raised when a payment intent is requested for a reservation
    that is no longer Pending.
    """

    def __init__(self, reservation_id: str, status: str):
        self.reservation_id = reservation_id
        self.from_state = status
        self.to_state = status
        ReservationEngineError.__init__(
            self,
            f"Reservation {reservation_id} is {status}; "
            f"payment can only be requested while it is Pending",
        )


class ReservationNotFoundError(ReservationEngineError):
    code = ErrorCode.RESERVATION_NOT_FOUND
    status_code = 404

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} not found")


class EventNotFoundError(ReservationEngineError):
    code = ErrorCode.EVENT_NOT_FOUND
    status_code = 404

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class PaymentNotFoundError(ReservationEngineError):
    code = ErrorCode.PAYMENT_NOT_FOUND
    status_code = 404

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Payment {reference} not found")


class PaymentReferenceConflictError(ReservationEngineError):
    """Raised when a payment already carries a different gateway reference."""

    code = ErrorCode.PAYMENT_REFERENCE_CONFLICT
    status_code = 409

    def __init__(self, payment_id: str, existing: str, attempted: str):
        self.payment_id = payment_id
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"Payment {payment_id} is already bound to {existing}, refusing {attempted}"
        )


class UnauthorizedReservationAccessError(ReservationEngineError):
    """Raised when the acting user does not own the reservation."""

    code = ErrorCode.UNAUTHORIZED_RESERVATION_ACCESS
    status_code = 403

    def __init__(self, reservation_id: str, user_id: str):
        self.reservation_id = reservation_id
        self.user_id = user_id
        super().__init__(
            f"User {user_id} may not act on reservation {reservation_id}"
        )


class GatewayCommunicationError(ReservationEngineError):
    """
    Raised when the payment gateway cannot be reached or rejects the call.
    Transient: the caller is expected to retry.
    """

    code = ErrorCode.GATEWAY_COMMUNICATION_FAILURE
    status_code = 502
