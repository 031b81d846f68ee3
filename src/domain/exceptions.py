

class TransitBookingError(Exception):
    """
    Base exception for all domain-level errors
    inside the Transit Booking Engine.
    """

    error_code = "GENERAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TransitBookingError):
    """Raised when a referenced trip, user, booking, payment or segment is absent."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, key: object | None = None):
        self.resource = resource
        self.key = key

        if key is not None:
            message = f"{resource} with key '{key}' was not found."
        else:
            message = f"{resource} was not found."
        super().__init__(message)


class ValidationError(TransitBookingError):
    """
    Raised when a business rule is violated.
    Carries per-field messages in `errors`.
    """

    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.errors: dict[str, list[str]] = {field: [message]}
        super().__init__(message)


class CapacityError(ValidationError):
    """Raised when a trip does not have enough seats left."""

    error_code = "CAPACITY_ERROR"
    INSUFFICIENT = "insufficient"

    def __init__(self, trip_id: str, requested: int, kind: str = INSUFFICIENT):
        self.trip_id = trip_id
        self.requested = requested
        self.kind = kind
        super().__init__(
            "seats_count",
            f"Not enough available seats on trip '{trip_id}' for {requested} seat(s).",
        )


class InvalidFareError(ValidationError):
    """Raised when a fare cannot be derived from the booked segments."""

    error_code = "INVALID_FARE"

    def __init__(self, message: str):
        super().__init__("total_amount", message)


class InvalidStateTransitionError(ValidationError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__("booking_status", message)


class GatewayError(TransitBookingError):
    """Raised when the payment processor call fails, times out or answers garbage."""

    error_code = "GATEWAY_ERROR"
