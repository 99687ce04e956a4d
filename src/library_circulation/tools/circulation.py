"""
Circulation tools for the library circulation server.

Each tool validates its arguments with a Pydantic input model, runs one
circulation operation and answers with a structured response:

- success: ``{"statusCode": 200|201, "content": [...], "data": {...}}``
- failure: ``{"isError": True, "statusCode": 400|503|500, "content": [...],
  "error": {"reason", "category", "message", "retryable"}}``

Business rejections are 400, a store failure is 503 and retryable, anything
unexpected is 500 with a generic message. Exception details never leave the
server.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..circulation.services import get_services
from ..errors import CirculationError, StoreUnavailable
from ..models.common import Role
from ..models.copy import CopyStatus
from ..observability import trace_tool

logger = logging.getLogger(__name__)

MEMBER_ID_PATTERN = r"^member_[a-zA-Z0-9_]{6,}$"
BOOK_ID_PATTERN = r"^book_[a-zA-Z0-9_]{3,}$"


# =============================================================================
# RESPONSE HELPERS
# =============================================================================


def _success(status_code: int, message: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "content": [{"type": "text", "text": message}],
        "data": data,
    }


def _failure(status_code: int, error: dict[str, Any]) -> dict[str, Any]:
    return {
        "isError": True,
        "statusCode": status_code,
        "content": [{"type": "text", "text": error["message"]}],
        "error": error,
    }


def _invalid_input(tool_name: str, exc: ValidationError) -> dict[str, Any]:
    logger.warning("Invalid %s parameters: %s", tool_name, exc)
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )
    return _failure(
        400,
        {
            "reason": "InvalidInput",
            "category": "invalid_input",
            "message": f"Invalid {tool_name} parameters: {problems}",
            "retryable": False,
        },
    )


def _circulation_failure(tool_name: str, exc: CirculationError) -> dict[str, Any]:
    if isinstance(exc, StoreUnavailable):
        logger.error("%s failed: store unavailable", tool_name)
        return _failure(503, exc.to_dict())

    logger.info("%s rejected: %s (%s)", tool_name, exc.reason, exc.message)
    return _failure(400, exc.to_dict())


def _unexpected_failure(tool_name: str) -> dict[str, Any]:
    logger.exception("Unexpected error in %s tool", tool_name)
    return _failure(
        500,
        {
            "reason": "InternalError",
            "category": "internal",
            "message": "An unexpected error occurred",
            "retryable": False,
        },
    )


# =============================================================================
# ISSUE / RETURN
# =============================================================================


class IssueBookInput(BaseModel):
    """Input schema for the issue_book tool."""

    copy_id: str = Field(
        ...,
        description="Physical copy to lend",
        pattern=r"^copy_[a-zA-Z0-9]{6,}$",
        examples=["copy_3f9a2c81d0e4"],
    )

    member_id: str = Field(
        ...,
        description="Member borrowing the copy",
        pattern=MEMBER_ID_PATTERN,
        examples=["member_smith001"],
    )


@trace_tool("issue_book")
async def issue_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the issue_book tool.

    Lends an AVAILABLE copy (or a copy held for this member) and opens a
    loan due after the standard loan period.
    """
    try:
        params = IssueBookInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("issue_book", e)

    try:
        loan = get_services().engine.issue(params.copy_id, params.member_id)
    except CirculationError as e:
        return _circulation_failure("issue_book", e)
    except Exception:
        return _unexpected_failure("issue_book")

    return _success(
        201,
        f"Issued copy '{loan.book_copy_id}' to member '{loan.member_id}'. "
        f"Due date: {loan.due_date.strftime('%B %d, %Y')}",
        {"loan": loan.model_dump(mode="json")},
    )


class ReturnBookInput(BaseModel):
    """Input schema for the return_book tool."""

    loan_id: str = Field(
        ...,
        description="Loan being closed",
        pattern=r"^loan_[a-zA-Z0-9]{6,}$",
        examples=["loan_8c2d4e6f0a1b"],
    )


@trace_tool("return_book")
async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the return_book tool. Records the fine, if any."""
    try:
        params = ReturnBookInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("return_book", e)

    try:
        loan = get_services().engine.return_loan(params.loan_id)
    except CirculationError as e:
        return _circulation_failure("return_book", e)
    except Exception:
        return _unexpected_failure("return_book")

    message = f"Loan '{loan.id}' returned."
    if loan.fine_amount > 0:
        message += f" Late return fine: ${loan.fine_amount:.2f}"
    return _success(200, message, {"loan": loan.model_dump(mode="json")})


# =============================================================================
# RESERVATIONS
# =============================================================================


class CreateReservationInput(BaseModel):
    """Input schema for the create_reservation tool."""

    book_id: str = Field(
        ...,
        description="Title to reserve; only possible while no copy is available",
        pattern=BOOK_ID_PATTERN,
        examples=["book_gatsby01"],
    )

    member_id: str = Field(
        ...,
        description="Member placing the reservation",
        pattern=MEMBER_ID_PATTERN,
        examples=["member_smith001"],
    )


@trace_tool("create_reservation")
async def create_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = CreateReservationInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("create_reservation", e)

    try:
        reservation = get_services().queue.reserve(params.book_id, params.member_id)
    except CirculationError as e:
        return _circulation_failure("create_reservation", e)
    except Exception:
        return _unexpected_failure("create_reservation")

    return _success(
        201,
        f"Reserved '{reservation.book_id}' for member '{reservation.member_id}'. "
        f"Reservation expires on {reservation.expiry_date.strftime('%B %d, %Y')}",
        {"reservation": reservation.model_dump(mode="json")},
    )


class CancelReservationInput(BaseModel):
    """Input schema for the cancel_reservation tool."""

    reservation_id: str = Field(
        ...,
        description="Reservation to cancel",
        pattern=r"^reservation_[a-zA-Z0-9]{6,}$",
        examples=["reservation_5e7f9a1b3c2d"],
    )

    actor_member_id: str | None = Field(
        default=None,
        description="Authenticated member performing the cancellation",
        examples=["member_smith001"],
    )

    actor_role: Role = Field(
        default=Role.MEMBER,
        description="Role of the authenticated actor; staff may cancel any reservation",
    )


@trace_tool("cancel_reservation")
async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the cancel_reservation tool. Owners and staff only."""
    try:
        params = CancelReservationInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("cancel_reservation", e)

    try:
        reservation = get_services().queue.cancel(
            params.reservation_id, params.actor_member_id, params.actor_role
        )
    except CirculationError as e:
        return _circulation_failure("cancel_reservation", e)
    except Exception:
        return _unexpected_failure("cancel_reservation")

    return _success(
        200,
        f"Reservation '{reservation.id}' cancelled",
        {"reservation": reservation.model_dump(mode="json")},
    )


class ExpireReservationsInput(BaseModel):
    """Input schema for the expire_reservations tool."""

    now: datetime | None = Field(
        default=None,
        description="Point in time to expire against; defaults to the server clock",
        examples=["2024-03-08T12:00:00"],
    )


@trace_tool("expire_reservations")
async def expire_reservations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the expire_reservations tool, the scheduler entry point."""
    try:
        params = ExpireReservationsInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("expire_reservations", e)

    try:
        result = get_services().queue.expire_stale(params.now)
    except CirculationError as e:
        return _circulation_failure("expire_reservations", e)
    except Exception:
        return _unexpected_failure("expire_reservations")

    return _success(
        200,
        f"Expired {result.expired_count} reservation(s); "
        f"{len(result.reallocated)} copy(ies) re-held, {len(result.released_copies)} shelved",
        {"sweep": result.model_dump(mode="json")},
    )


# =============================================================================
# COPIES
# =============================================================================


class AddCopyInput(BaseModel):
    """Input schema for the add_copy tool."""

    book_id: str = Field(
        ...,
        description="Title the new copy belongs to",
        pattern=BOOK_ID_PATTERN,
        examples=["book_gatsby01"],
    )

    location: str = Field(
        default="Main Library",
        description="Shelf location of the copy",
        max_length=200,
        examples=["Main Library", "Science Wing"],
    )


@trace_tool("add_copy")
async def add_copy_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = AddCopyInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("add_copy", e)

    try:
        copy = get_services().registry.register(params.book_id, params.location)
    except CirculationError as e:
        return _circulation_failure("add_copy", e)
    except Exception:
        return _unexpected_failure("add_copy")

    return _success(
        201,
        f"Registered {copy.copy_number} of '{copy.book_id}' at {copy.location}",
        {"copy": copy.model_dump(mode="json")},
    )


class MarkCopyStatusInput(BaseModel):
    """Input schema for the mark_copy_status tool."""

    copy_id: str = Field(
        ...,
        description="Copy to write off",
        pattern=r"^copy_[a-zA-Z0-9]{6,}$",
        examples=["copy_3f9a2c81d0e4"],
    )

    status: str = Field(
        ...,
        description="New terminal status of the copy",
        pattern=r"^(DAMAGED|LOST)$",
        examples=["DAMAGED", "LOST"],
    )


@trace_tool("mark_copy_status")
async def mark_copy_status_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = MarkCopyStatusInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid_input("mark_copy_status", e)

    try:
        copy = get_services().registry.set_status(params.copy_id, CopyStatus(params.status))
    except CirculationError as e:
        return _circulation_failure("mark_copy_status", e)
    except Exception:
        return _unexpected_failure("mark_copy_status")

    return _success(
        200,
        f"Copy '{copy.id}' marked {copy.status}",
        {"copy": copy.model_dump(mode="json")},
    )


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

issue_book = {
    "name": "issue_book",
    "description": (
        "Lend a physical copy to a member. The member must be active and under their "
        "borrowing cap; the copy must be available or held for this member. Opens a "
        "loan with a due date."
    ),
    "inputSchema": IssueBookInput.model_json_schema(),
    "handler": issue_book_handler,
}

return_book = {
    "name": "return_book",
    "description": (
        "Return a loaned copy. Computes the overdue fine and either shelves the copy or "
        "holds it for the oldest pending reservation on the title."
    ),
    "inputSchema": ReturnBookInput.model_json_schema(),
    "handler": return_book_handler,
}

create_reservation = {
    "name": "create_reservation",
    "description": (
        "Reserve a title that has no available copies. Reservations are served first "
        "come first served and lapse after the hold period."
    ),
    "inputSchema": CreateReservationInput.model_json_schema(),
    "handler": create_reservation_handler,
}

cancel_reservation = {
    "name": "cancel_reservation",
    "description": "Cancel a pending reservation. Allowed for its owner and for staff.",
    "inputSchema": CancelReservationInput.model_json_schema(),
    "handler": cancel_reservation_handler,
}

expire_reservations = {
    "name": "expire_reservations",
    "description": (
        "Expire lapsed pending reservations and uncollected holds, passing held copies "
        "on to the next member in the queue."
    ),
    "inputSchema": ExpireReservationsInput.model_json_schema(),
    "handler": expire_reservations_handler,
}

add_copy = {
    "name": "add_copy",
    "description": "Register a new physical copy of a catalog title with the next copy number.",
    "inputSchema": AddCopyInput.model_json_schema(),
    "handler": add_copy_handler,
}

mark_copy_status = {
    "name": "mark_copy_status",
    "description": "Write off a copy as DAMAGED or LOST. Copies on loan must be returned first.",
    "inputSchema": MarkCopyStatusInput.model_json_schema(),
    "handler": mark_copy_status_handler,
}
