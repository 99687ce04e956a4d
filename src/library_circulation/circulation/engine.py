"""
Circulation engine: issues copies to members and takes them back.

Each operation is one transaction. Issuing a copy and opening its loan commit
together, and so do closing a loan and deciding where the copy goes next, so
no caller can ever observe a copy on loan without a loan or the reverse.

Row locks are always taken member or loan first, then title, then copy, so
concurrent issues and returns cannot deadlock on databases with row locks.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import CirculationConfig, get_config
from ..database.book_repository import BookRepository
from ..database.copy_repository import CopyRepository
from ..database.loan_repository import LoanRepository
from ..database.member_repository import MemberRepository
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.reservation_repository import ReservationRepository
from ..database.session import DatabaseManager
from ..errors import (
    AlreadyReturnedError,
    CopyNotFoundError,
    CopyUnavailableError,
    LoanNotFoundError,
    MemberNotFoundError,
)
from ..models.copy import BookCopy, CopyStatus
from ..models.loan import CirculationStats, Loan
from ..models.reservation import ReservationStatus
from ..observability import record_circulation_event, trace_operation
from .copy_registry import CopyRegistry
from .fines import FineCalculator
from .membership import MembershipGate
from .reservations import ReservationQueue

logger = logging.getLogger(__name__)


class CirculationEngine:
    """
    Orchestrates issue and return.

    Collaborators are created from ``db`` and ``config`` unless passed in, so
    tests can share one registry and queue between the engine and themselves.
    """

    def __init__(
        self,
        db: DatabaseManager,
        config: CirculationConfig | None = None,
        *,
        registry: CopyRegistry | None = None,
        gate: MembershipGate | None = None,
        queue: ReservationQueue | None = None,
        fines: FineCalculator | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.config = config or get_config()
        self.registry = registry or CopyRegistry(db)
        self.gate = gate or MembershipGate(db)
        self.queue = queue or ReservationQueue(db, self.config, self.registry, clock)
        self.fines = fines or FineCalculator(self.config.fine_rate_per_day)
        self._clock = clock

    # === Issue ===

    @trace_operation("issue")
    def issue(self, copy_id: str, member_id: str) -> Loan:
        """
        Lend a copy to a member.

        The copy must be AVAILABLE, or RESERVED and held for a reservation
        this member owns (collecting a hold).

        Raises:
            MemberNotFoundError: No such member
            MemberInactiveError: The member is suspended
            LimitReachedError: The member is at their borrowing cap
            CopyNotFoundError: No such copy
            CopyUnavailableError: The copy cannot be lent to this member right now
        """
        with self.db.session_scope() as session:
            member = MemberRepository(session).lock(member_id)
            if member is None:
                raise MemberNotFoundError()
            self.gate.ensure_can_borrow(member)

            copies = CopyRepository(session)
            copy = copies.lock(copy_id)
            if copy is None:
                raise CopyNotFoundError()
            self._ensure_lendable(session, copy, member_id)

            self.registry.transition(session, copy, CopyStatus.ISSUED)

            now = self._clock()
            loan = LoanRepository(session).insert(
                copy_id=copy.id,
                member_id=member.id,
                issue_date=now,
                due_date=now.date() + timedelta(days=self.config.loan_period_days),
            )

        logger.info(
            "Issued copy %s to %s as loan %s, due %s",
            copy_id,
            member_id,
            loan.id,
            loan.due_date.isoformat(),
        )
        record_circulation_event("issue", book_id=copy.book_id)
        return loan

    @staticmethod
    def _ensure_lendable(session: Session, copy: BookCopy, member_id: str) -> None:
        match CopyStatus(copy.status):
            case CopyStatus.AVAILABLE:
                return
            case CopyStatus.RESERVED if copy.hold_reservation_id:
                hold = ReservationRepository(session).get_by_id(copy.hold_reservation_id)
                if (
                    hold is not None
                    and hold.status == ReservationStatus.FULFILLED
                    and hold.member_id == member_id
                ):
                    logger.debug("Member %s collecting held copy %s", member_id, copy.id)
                    return
                raise CopyUnavailableError(copy.status, "Book copy is held for another member")
            case _:
                raise CopyUnavailableError(copy.status)

    # === Return ===

    @trace_operation("return")
    def return_loan(self, loan_id: str) -> Loan:
        """
        Close a loan, record its fine and send the copy to its next holder.

        If anyone is queued for the title the copy is held for the oldest
        reservation; otherwise it goes back on the shelf.

        Raises:
            LoanNotFoundError: No such loan
            AlreadyReturnedError: The loan is already closed
        """
        with self.db.session_scope() as session:
            loans = LoanRepository(session)
            loan = loans.lock(loan_id)
            if loan is None:
                raise LoanNotFoundError()
            if not loan.is_active:
                raise AlreadyReturnedError()

            copies = CopyRepository(session)
            copy = copies.get_by_id(loan.book_copy_id)
            BookRepository(session).lock(copy.book_id)
            copy = copies.lock(copy.id)

            now = self._clock()
            fine = self.fines.compute(loan.due_date, now.date())
            closed = loans.close(loan.id, now, fine)
            if closed is None:
                raise AlreadyReturnedError()

            if copy.status == CopyStatus.ISSUED:
                held_for = self.queue.allocate(session, copy, now)
            else:
                held_for = None
                logger.warning(
                    "Returned copy %s was %s rather than ISSUED; status left unchanged",
                    copy.id,
                    copy.status,
                )

        logger.info(
            "Loan %s returned (fine %.2f); copy %s %s",
            loan_id,
            closed.fine_amount,
            copy.id,
            f"held for {held_for.id}" if held_for else "shelved",
        )
        record_circulation_event("return", book_id=copy.book_id)
        return closed

    # === Queries ===

    def get_loan(self, loan_id: str) -> Loan:
        with self.db.session_scope() as session:
            loan = LoanRepository(session).get_by_id(loan_id)
        if loan is None:
            raise LoanNotFoundError()
        return loan

    def active_loans(
        self,
        member_id: str | None = None,
        overdue_only: bool = False,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[Loan]:
        """Open loans, soonest due first."""
        today = self._clock().date()
        with self.db.session_scope() as session:
            return LoanRepository(session).get_active(
                member_id=member_id,
                overdue_on=today if overdue_only else None,
                pagination=pagination,
            )

    def member_loans(
        self, member_id: str, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[Loan]:
        """A member's full loan history, newest first."""
        with self.db.session_scope() as session:
            if not MemberRepository(session).exists(member_id):
                raise MemberNotFoundError()
            return LoanRepository(session).get_member_history(member_id, pagination)

    def loan_stats(self) -> CirculationStats:
        today = self._clock().date()
        with self.db.session_scope() as session:
            loans = LoanRepository(session)
            return CirculationStats(
                active_loans=loans.count_active(),
                overdue_loans=loans.count_overdue(today),
                issued_today=loans.count_issued_on(today),
                returned_today=loans.count_returned_on(today),
                pending_reservations=ReservationRepository(session).count_pending(),
            )
