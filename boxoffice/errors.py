"""Error taxonomy for the reservation core.

Every failure the core surfaces carries an ``ErrorCode`` and a user-safe
message. Routers translate the family (class) into an HTTP status; clients
switch on the code.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # validation
    INVALID_QUANTITY = "INVALID_QUANTITY"
    ATTENDEE_COUNT_MISMATCH = "ATTENDEE_COUNT_MISMATCH"
    DUPLICATE_ATTENDEE = "DUPLICATE_ATTENDEE"
    INVALID_ATTENDEE = "INVALID_ATTENDEE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_DISCOUNT = "INVALID_DISCOUNT"
    DISCOUNT_DISABLED = "DISCOUNT_DISABLED"
    DISCOUNT_NOT_STARTED = "DISCOUNT_NOT_STARTED"
    DISCOUNT_EXPIRED = "DISCOUNT_EXPIRED"
    DISCOUNT_ALREADY_USED = "DISCOUNT_ALREADY_USED"
    DUPLICATE_DISCOUNT_CODE = "DUPLICATE_DISCOUNT_CODE"

    # capacity
    INSUFFICIENT_CAPACITY = "INSUFFICIENT_CAPACITY"
    EVENT_INACTIVE = "EVENT_INACTIVE"
    EVENT_PAST = "EVENT_PAST"

    # conflict
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    EXPIRED = "EXPIRED"
    NOT_EXPIRED = "NOT_EXPIRED"
    PAID_NOT_CANCELLABLE = "PAID_NOT_CANCELLABLE"

    # gateway
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"

    # lookup
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    DISCOUNT_NOT_FOUND = "DISCOUNT_NOT_FOUND"


class BoxOfficeError(Exception):
    """Base error with code and user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(BoxOfficeError):
    """Malformed request; nothing was mutated."""


class CapacityError(BoxOfficeError):
    """The event cannot take the requested tickets; nothing was mutated."""


class ConflictError(BoxOfficeError):
    """The reservation is in a state that forbids the operation.

    Retrying the same operation will not produce a different outcome.
    """


class GatewayError(BoxOfficeError):
    """The payment gateway failed or sent something we cannot trust."""


class NotFoundError(BoxOfficeError):
    """Unknown event, reservation or discount."""
