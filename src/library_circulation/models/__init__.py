"""
Library Circulation Models.

Pydantic models for the entities the circulation engine reads and writes:

- Book: catalog title with derived availability
- BookCopy: a physical copy and its circulation status
- Member: a borrower and their borrowing cap
- Loan: one copy issued to one member
- Reservation: a queued hold on an exhausted title
"""

from .book import Book, BookAvailability
from .common import Role
from .copy import BookCopy, CopyStatus, format_copy_number
from .loan import CirculationStats, Loan, LoanStatus
from .member import (
    DEFAULT_BORROWING_LIMIT,
    TIER_BORROWING_LIMITS,
    Member,
    MemberStatus,
    MembershipTier,
)
from .reservation import ExpirySweepResult, Reservation, ReservationStatus

__all__ = [
    "DEFAULT_BORROWING_LIMIT",
    "TIER_BORROWING_LIMITS",
    "Book",
    "BookAvailability",
    "BookCopy",
    "CirculationStats",
    "CopyStatus",
    "ExpirySweepResult",
    "Loan",
    "LoanStatus",
    "Member",
    "MemberStatus",
    "MembershipTier",
    "Reservation",
    "ReservationStatus",
    "Role",
    "format_copy_number",
]
