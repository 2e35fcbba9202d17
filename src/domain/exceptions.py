

class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the Cineplus Booking Engine.
    """


class ValidationError(BookingEngineError):
    """Raised when request input is malformed."""


class InvalidSeatSelectionError(ValidationError):
    """Raised when requested seats do not exist on the showtime's screen."""


class NotFoundError(BookingEngineError):
    """Raised when a showtime, seat, booking or catalog entry is absent."""


class NotAuthorizedError(BookingEngineError):
    """Raised when the caller may not act on the target resource."""


class ConflictError(BookingEngineError):
    """Raised when the request collides with existing state."""


class SeatsUnavailableError(ConflictError):
    """
    Raised when one or more requested seats are held
    by another booking for the same showtime.
    """

    def __init__(self, seat_numbers: list[str]):
        self.seat_numbers = sorted(seat_numbers)

        message = (
            f"Seat(s) {', '.join(self.seat_numbers)} are no longer available. "
            f"Please select different seats."
        )
        super().__init__(message)


class ScheduleConflictError(ConflictError):
    """
    Raised when a showtime's occupied interval overlaps
    another scheduled showtime on the same screen.
    """

    def __init__(
        self,
        message: str,
        conflicting_title: str | None = None,
        candidate_start=None,
        conflict_window=None,
    ):
        self.conflicting_title = conflicting_title
        self.candidate_start = candidate_start
        self.conflict_window = conflict_window
        super().__init__(message)


class InvalidStateError(BookingEngineError):
    """Raised when an action is not permitted in the current status."""


class InvalidStateTransitionError(InvalidStateError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class PaymentVerificationError(BookingEngineError):
    """Raised when a payment gateway signature does not match."""


class ExternalServiceError(BookingEngineError):
    """Raised when an external collaborator is unusable."""


class RetryableStoreError(BookingEngineError):
    """Raised when the data store aborted the transaction (lock or timeout)."""
