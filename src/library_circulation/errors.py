"""
Error taxonomy for the circulation engine.

Every rejection the engine can produce is a ``CirculationError`` subclass with:

1. **category**: which family of failure it is (not found, wrong lifecycle
   state, policy rejection, missing permission, store failure)
2. **reason**: a stable machine-readable code that callers can switch on
3. **message**: a human-readable explanation safe to show to end users

Business errors are legitimate rejections and are never retried internally.
``StoreUnavailable`` is the only retryable error; it is raised after the
enclosing transaction has been rolled back.
"""

import enum
from typing import Any, ClassVar


class ErrorCategory(str, enum.Enum):
    """Families of circulation failures."""

    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    POLICY_VIOLATION = "policy_violation"
    UNAUTHORIZED = "unauthorized"
    STORE_FAILURE = "store_failure"


class CirculationError(Exception):
    """Base exception for circulation operations."""

    category: ClassVar[ErrorCategory] = ErrorCategory.INVALID_STATE
    reason: ClassVar[str] = "CirculationError"
    retryable: ClassVar[bool] = False
    default_message: ClassVar[str] = "Circulation operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the tool boundary (no internals, no traceback)."""
        return {
            "reason": self.reason,
            "category": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
        }


# === Not Found ===


class NotFoundError(CirculationError):
    """Raised when an entity referenced by id does not exist."""

    category = ErrorCategory.NOT_FOUND
    reason = "NotFound"
    default_message = "Entity not found"


class MemberNotFoundError(NotFoundError):
    reason = "MemberNotFound"
    default_message = "Member not found"


class BookNotFoundError(NotFoundError):
    reason = "BookNotFound"
    default_message = "Book not found"


class CopyNotFoundError(NotFoundError):
    reason = "CopyNotFound"
    default_message = "Book copy not found"


class LoanNotFoundError(NotFoundError):
    reason = "LoanNotFound"
    default_message = "Loan record not found"


class ReservationNotFoundError(NotFoundError):
    reason = "NotFound"
    default_message = "Reservation not found"


# === Invalid State ===


class InvalidStateError(CirculationError):
    """Raised when an entity is in the wrong lifecycle state for the operation."""

    category = ErrorCategory.INVALID_STATE
    reason = "InvalidState"


class AlreadyReturnedError(InvalidStateError):
    reason = "AlreadyReturned"
    default_message = "This book has already been returned"


class CopyUnavailableError(InvalidStateError):
    """The copy exists but cannot be issued in its current status."""

    reason = "CopyUnavailable"

    def __init__(self, current_status: str, message: str | None = None):
        self.current_status = current_status
        super().__init__(message or f"Book copy is not available (status: {current_status})")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current_status"] = self.current_status
        return data


class NotPendingError(InvalidStateError):
    reason = "NotPending"
    default_message = "Can only cancel pending reservations"


class InvalidTransitionError(InvalidStateError):
    """A copy status change that the copy state machine does not allow."""

    reason = "InvalidTransition"

    def __init__(self, current_status: str, new_status: str, message: str | None = None):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            message or f"Cannot change copy status from {current_status} to {new_status}"
        )


# === Policy Violation ===


class PolicyViolationError(CirculationError):
    """Raised when a business rule rejects the operation."""

    category = ErrorCategory.POLICY_VIOLATION
    reason = "PolicyViolation"


class MemberInactiveError(PolicyViolationError):
    reason = "MemberInactive"
    default_message = "Member account is not active"


class LimitReachedError(PolicyViolationError):
    reason = "LimitReached"

    def __init__(self, max_books_allowed: int, message: str | None = None):
        self.max_books_allowed = max_books_allowed
        super().__init__(
            message
            or f"Member has reached maximum borrowing limit ({max_books_allowed} books)"
        )


class DuplicateReservationError(PolicyViolationError):
    reason = "DuplicateReservation"
    default_message = "Member already has a pending reservation for this book"


class BookAvailableError(PolicyViolationError):
    reason = "BookAvailable"
    default_message = "Book is available - no reservation needed"


class DuplicateMemberError(PolicyViolationError):
    reason = "DuplicateMember"
    default_message = "A member with this email address already exists"


# === Unauthorized ===


class NotAuthorizedError(CirculationError):
    category = ErrorCategory.UNAUTHORIZED
    reason = "NotAuthorized"
    default_message = "Not authorized to perform this action"


# === Store Failure ===


class StoreUnavailable(CirculationError):
    """The backing store failed or timed out; the transaction was rolled back."""

    category = ErrorCategory.STORE_FAILURE
    reason = "StoreUnavailable"
    retryable = True
    default_message = "The circulation store is temporarily unavailable, please retry"
