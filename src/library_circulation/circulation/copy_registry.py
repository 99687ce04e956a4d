"""
Copy registry: physical copies and their status state machine.

Allowed status changes::

    AVAILABLE -> ISSUED | RESERVED
    ISSUED    -> AVAILABLE
    RESERVED  -> ISSUED
    AVAILABLE | ISSUED | RESERVED -> DAMAGED | LOST   (only with no active loan)

Three more changes exist only while a copy is being handed on after a return
or a missed pickup, and are never accepted from outside the engine:
ISSUED -> RESERVED, RESERVED -> AVAILABLE and RESERVED -> RESERVED (held for
the next member in the queue).

A copy only enters RESERVED together with the reservation it is held for.
Every change is a compare-and-swap on the copy's status and version.
"""

import logging

from sqlalchemy.orm import Session

from ..database.book_repository import BookRepository
from ..database.copy_repository import CopyRepository
from ..database.loan_repository import LoanRepository
from ..database.reservation_repository import ReservationRepository
from ..database.session import DatabaseManager
from ..errors import (
    BookNotFoundError,
    CopyNotFoundError,
    CopyUnavailableError,
    InvalidTransitionError,
)
from ..models.copy import COPY_NUMBER_PREFIX, BookCopy, CopyStatus, format_copy_number
from ..models.reservation import ReservationStatus
from ..observability import record_circulation_event, trace_operation

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[CopyStatus, frozenset[CopyStatus]] = {
    CopyStatus.AVAILABLE: frozenset({CopyStatus.ISSUED, CopyStatus.RESERVED}),
    CopyStatus.ISSUED: frozenset({CopyStatus.AVAILABLE}),
    CopyStatus.RESERVED: frozenset({CopyStatus.ISSUED}),
    CopyStatus.DAMAGED: frozenset(),
    CopyStatus.LOST: frozenset(),
}

_RESOLUTION_TRANSITIONS: frozenset[tuple[CopyStatus, CopyStatus]] = frozenset(
    {
        (CopyStatus.ISSUED, CopyStatus.RESERVED),
        (CopyStatus.RESERVED, CopyStatus.AVAILABLE),
        (CopyStatus.RESERVED, CopyStatus.RESERVED),
    }
)

_TERMINAL = frozenset({CopyStatus.DAMAGED, CopyStatus.LOST})


def is_allowed(current: CopyStatus, new: CopyStatus, *, resolution: bool = False) -> bool:
    """Whether the state machine permits ``current -> new``."""
    if current in _TERMINAL:
        return False
    if new in _TERMINAL:
        return True
    if resolution and (current, new) in _RESOLUTION_TRANSITIONS:
        return True
    return new in _TRANSITIONS[current]


def next_copy_number(existing: list[str]) -> str:
    """
    Next copy number after the highest numeric suffix in ``existing``.

    Gaps are never reused, so removing an early copy cannot hand its number to
    a new one while the later numbers still exist.
    """
    highest = 0
    for number in existing:
        suffix = number.removeprefix(COPY_NUMBER_PREFIX)
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return format_copy_number(highest + 1)


class CopyRegistry:
    """Owns BookCopy records and enforces the copy state machine."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # === Registration ===

    @trace_operation("register_copy")
    def register(self, book_id: str, location: str = "Main Library") -> BookCopy:
        """
        Register a new AVAILABLE copy of ``book_id``.

        The title row stays locked until the transaction ends, so two
        registrations for the same title can never pick the same number.

        Raises:
            BookNotFoundError: The title is not in the catalog
        """
        with self.db.session_scope() as session:
            if not BookRepository(session).lock(book_id):
                raise BookNotFoundError()

            copies = CopyRepository(session)
            copy_number = next_copy_number(copies.copy_numbers(book_id))
            copy = copies.insert(book_id, copy_number, location)

        logger.info(
            "Registered copy %s (%s) of %s at %s", copy.id, copy.copy_number, book_id, copy.location
        )
        record_circulation_event("copy_registered", book_id=book_id)
        return copy

    def generate_copy_number(self, book_id: str) -> str:
        """Copy number the next registration for ``book_id`` would receive."""
        with self.db.session_scope() as session:
            if not BookRepository(session).lock(book_id):
                raise BookNotFoundError()
            return next_copy_number(CopyRepository(session).copy_numbers(book_id))

    # === Queries ===

    def get_copy(self, copy_id: str) -> BookCopy:
        with self.db.session_scope() as session:
            copy = CopyRepository(session).get_by_id(copy_id)
        if copy is None:
            raise CopyNotFoundError()
        return copy

    def list_copies(self, book_id: str) -> list[BookCopy]:
        with self.db.session_scope() as session:
            if not BookRepository(session).exists(book_id):
                raise BookNotFoundError()
            return CopyRepository(session).list_by_book(book_id)

    def find_available(self, book_id: str) -> BookCopy | None:
        """First AVAILABLE copy of a title, lowest copy number first."""
        with self.db.session_scope() as session:
            return CopyRepository(session).find_available(book_id)

    # === Status changes ===

    def transition(
        self,
        session: Session,
        copy: BookCopy,
        new_status: CopyStatus,
        hold_reservation_id: str | None = None,
        *,
        resolution: bool = False,
    ) -> BookCopy:
        """
        Apply one status change inside the caller's transaction.

        Args:
            session: The caller's open session
            copy: The copy as the caller last read it
            new_status: Target status
            hold_reservation_id: Reservation to hold the copy for (RESERVED only)
            resolution: Allow the hand-on changes used by returns and expiry

        Raises:
            InvalidTransitionError: The state machine forbids the change, or a
                RESERVED change names no reservation to hold the copy for
            CopyUnavailableError: Another writer changed the copy first
        """
        current = CopyStatus(copy.status)
        if not is_allowed(current, new_status, resolution=resolution):
            raise InvalidTransitionError(current.value, new_status.value)

        if new_status == CopyStatus.RESERVED and hold_reservation_id is None:
            raise InvalidTransitionError(
                current.value,
                new_status.value,
                "A copy can only be reserved for a pending reservation",
            )

        if new_status in _TERMINAL and LoanRepository(session).active_for_copy(copy.id):
            raise InvalidTransitionError(
                current.value,
                new_status.value,
                "Cannot write off a copy that is on loan; return it first",
            )

        copies = CopyRepository(session)
        updated = copies.compare_and_set_status(copy, new_status, hold_reservation_id)
        if updated is None:
            latest = copies.get_by_id(copy.id)
            raise CopyUnavailableError(latest.status if latest else current.value)

        logger.debug("Copy %s: %s -> %s", copy.id, current.value, new_status.value)
        return updated

    @trace_operation("set_copy_status")
    def set_status(self, copy_id: str, new_status: CopyStatus) -> BookCopy:
        """
        Change a copy's status in its own transaction.

        Writing off a RESERVED copy releases its hold; the reservation it was
        held for is cancelled because the copy can no longer be collected.
        """
        new_status = CopyStatus(new_status)
        with self.db.session_scope() as session:
            copy = CopyRepository(session).get_by_id(copy_id)
            if copy is None:
                raise CopyNotFoundError()
            BookRepository(session).lock(copy.book_id)

            copy = CopyRepository(session).lock(copy_id)
            held_for = copy.hold_reservation_id
            updated = self.transition(session, copy, new_status)

            if held_for and new_status in _TERMINAL:
                ReservationRepository(session).transition(
                    held_for, ReservationStatus.FULFILLED, ReservationStatus.CANCELLED
                )
                logger.warning(
                    "Copy %s written off as %s while held; reservation %s cancelled",
                    copy_id,
                    new_status.value,
                    held_for,
                )

        record_circulation_event("copy_status", status=new_status.value)
        return updated

    def mark_damaged(self, copy_id: str) -> BookCopy:
        return self.set_status(copy_id, CopyStatus.DAMAGED)

    def mark_lost(self, copy_id: str) -> BookCopy:
        return self.set_status(copy_id, CopyStatus.LOST)
