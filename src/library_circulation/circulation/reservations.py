"""
Reservation queue: holds on exhausted titles, served first come first served.

A reservation may only be placed while a title has no AVAILABLE copy. When a
copy comes back (or a held copy is not collected in time) it is offered to the
oldest PENDING reservation for the title, ordered by reservation date and then
id, and held on the shelf as RESERVED until that member collects it.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import CirculationConfig, get_config
from ..database.book_repository import BookRepository
from ..database.copy_repository import CopyRepository
from ..database.member_repository import MemberRepository
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.reservation_repository import ReservationRepository
from ..database.session import DatabaseManager
from ..errors import (
    BookAvailableError,
    BookNotFoundError,
    DuplicateReservationError,
    MemberInactiveError,
    MemberNotFoundError,
    NotAuthorizedError,
    NotPendingError,
    ReservationNotFoundError,
)
from ..models.common import Role
from ..models.copy import BookCopy, CopyStatus
from ..models.reservation import ExpirySweepResult, Reservation, ReservationStatus
from ..observability import record_circulation_event, trace_operation
from .copy_registry import CopyRegistry

logger = logging.getLogger(__name__)


class ReservationQueue:
    """Owns reservation lifecycle transitions and FIFO allocation of copies."""

    def __init__(
        self,
        db: DatabaseManager,
        config: CirculationConfig | None = None,
        registry: CopyRegistry | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.config = config or get_config()
        self.registry = registry or CopyRegistry(db)
        self._clock = clock

    # === Placing and cancelling ===

    @trace_operation("reserve")
    def reserve(self, book_id: str, member_id: str) -> Reservation:
        """
        Queue ``member_id`` for ``book_id``.

        Raises:
            MemberNotFoundError: No such member
            MemberInactiveError: The member is suspended
            BookNotFoundError: No such title
            DuplicateReservationError: The member already has a PENDING hold on the title
            BookAvailableError: A copy is on the shelf; borrow it instead
        """
        with self.db.session_scope() as session:
            member = MemberRepository(session).get_by_id(member_id)
            if member is None:
                raise MemberNotFoundError()
            if not member.is_active:
                raise MemberInactiveError()

            books = BookRepository(session)
            if not books.lock(book_id):
                raise BookNotFoundError()

            reservations = ReservationRepository(session)
            if reservations.has_pending(book_id, member_id):
                raise DuplicateReservationError()

            availability = books.availability(book_id)
            if availability.available_count > 0:
                raise BookAvailableError(
                    f"Book has {availability.available_count} available "
                    f"cop{'y' if availability.available_count == 1 else 'ies'} - "
                    "no reservation needed"
                )

            now = self._clock()
            reservation = reservations.insert(
                book_id=book_id,
                member_id=member_id,
                reservation_date=now,
                expiry_date=now + timedelta(days=self.config.reservation_hold_days),
            )

        logger.info("Reservation %s placed by %s for %s", reservation.id, member_id, book_id)
        record_circulation_event("reserve", book_id=book_id)
        return reservation

    @trace_operation("cancel_reservation")
    def cancel(
        self, reservation_id: str, actor_member_id: str | None, actor_role: Role | str
    ) -> Reservation:
        """
        Cancel a PENDING reservation on behalf of its owner or a staff member.

        Raises:
            ReservationNotFoundError: No such reservation
            NotAuthorizedError: The actor is neither the owner nor staff, or the
                role is not a known one
            NotPendingError: The reservation is no longer PENDING
        """
        with self.db.session_scope() as session:
            reservations = ReservationRepository(session)
            reservation = reservations.lock(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError()

            try:
                role = Role(actor_role)
            except ValueError as e:
                raise NotAuthorizedError(f"Unknown role: {actor_role}") from e

            if not (role.is_staff or reservation.member_id == actor_member_id):
                logger.info(
                    "Actor %s (%s) may not cancel reservation %s",
                    actor_member_id,
                    role.value,
                    reservation_id,
                )
                raise NotAuthorizedError("Not authorized to cancel this reservation")

            if reservation.status != ReservationStatus.PENDING:
                raise NotPendingError()

            cancelled = reservations.transition(
                reservation_id, ReservationStatus.PENDING, ReservationStatus.CANCELLED
            )
            if cancelled is None:
                raise NotPendingError()

        logger.info(
            "Reservation %s cancelled by %s (%s)", reservation_id, actor_member_id, role.value
        )
        record_circulation_event("cancel", book_id=cancelled.book_id)
        return cancelled

    # === Allocation ===

    def allocate(self, session: Session, copy: BookCopy, now: datetime) -> Reservation | None:
        """
        Hand a copy that has just come free to the head of its title's queue.

        Runs inside the caller's transaction; the caller must hold the title
        lock. The copy ends up RESERVED for the oldest live PENDING reservation,
        which becomes FULFILLED with a pickup deadline, or AVAILABLE if nobody
        is waiting. Lapsed PENDING reservations met on the way are expired in
        the same transaction, so none is left waiting behind a shelved copy.

        Returns:
            The fulfilled reservation, or None if the copy went back on the shelf.
        """
        reservations = ReservationRepository(session)
        passed_over: set[str] = set()

        while True:
            candidate = reservations.next_pending(copy.book_id, skip=passed_over)
            if candidate is None:
                if copy.status != CopyStatus.AVAILABLE:
                    self.registry.transition(session, copy, CopyStatus.AVAILABLE, resolution=True)
                logger.debug(
                    "No pending reservation for %s; copy %s shelved", copy.book_id, copy.id
                )
                return None

            if candidate.expiry_date < now:
                passed_over.add(candidate.id)
                if reservations.transition(
                    candidate.id, ReservationStatus.PENDING, ReservationStatus.EXPIRED
                ):
                    logger.info(
                        "Reservation %s lapsed before copy %s came back; expired",
                        candidate.id,
                        copy.id,
                    )
                continue

            fulfilled = reservations.transition(
                candidate.id,
                ReservationStatus.PENDING,
                ReservationStatus.FULFILLED,
                fulfilled_date=now,
                pickup_deadline=now + timedelta(days=self.config.pickup_window_days),
            )
            if fulfilled is None:
                passed_over.add(candidate.id)
                continue

            self.registry.transition(
                session, copy, CopyStatus.RESERVED, fulfilled.id, resolution=True
            )
            logger.info(
                "Copy %s held for reservation %s (member %s) until %s",
                copy.id,
                fulfilled.id,
                fulfilled.member_id,
                fulfilled.pickup_deadline,
            )
            record_circulation_event("fulfill", book_id=copy.book_id)
            return fulfilled

    # === Expiry ===

    @trace_operation("expire_reservations")
    def expire_stale(self, now: datetime | None = None) -> ExpirySweepResult:
        """
        Expire lapsed reservations and pass on uncollected copies.

        1. PENDING reservations past their expiry date become EXPIRED.
        2. FULFILLED reservations whose copy is still waiting on the shelf past
           the pickup deadline become EXPIRED, and the copy is offered to the
           next member in the queue or returned to AVAILABLE.
        """
        now = now or self._clock()
        result = ExpirySweepResult()

        with self.db.session_scope() as session:
            reservations = ReservationRepository(session)
            for stale in reservations.pending_past_expiry(now):
                if reservations.transition(
                    stale.id, ReservationStatus.PENDING, ReservationStatus.EXPIRED
                ):
                    result.expired_pending.append(stale.id)

            copies = CopyRepository(session)
            books = BookRepository(session)
            for held in copies.held_copies_past_pickup(now):
                books.lock(held.book_id)
                copy = copies.lock(held.id)
                if copy.status != CopyStatus.RESERVED or copy.hold_reservation_id is None:
                    continue

                expired = reservations.transition(
                    copy.hold_reservation_id,
                    ReservationStatus.FULFILLED,
                    ReservationStatus.EXPIRED,
                )
                if expired is None:
                    continue
                result.expired_uncollected.append(expired.id)

                next_holder = self.allocate(session, copy, now)
                if next_holder is not None:
                    result.reallocated[copy.id] = next_holder.id
                else:
                    result.released_copies.append(copy.id)

        if result.expired_count:
            logger.info(
                "Expiry sweep: %d pending expired, %d uncollected expired, "
                "%d copies re-held, %d shelved",
                len(result.expired_pending),
                len(result.expired_uncollected),
                len(result.reallocated),
                len(result.released_copies),
            )
            record_circulation_event("expire")
        return result

    # === Queries ===

    def get_reservation(self, reservation_id: str) -> Reservation:
        with self.db.session_scope() as session:
            reservation = ReservationRepository(session).get_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError()
        return reservation

    def list_reservations(
        self,
        status: ReservationStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[Reservation]:
        with self.db.session_scope() as session:
            return ReservationRepository(session).list_reservations(
                status=status, pagination=pagination
            )

    def member_reservations(
        self, member_id: str, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[Reservation]:
        with self.db.session_scope() as session:
            if not MemberRepository(session).exists(member_id):
                raise MemberNotFoundError()
            return ReservationRepository(session).list_reservations(
                member_id=member_id, pagination=pagination
            )

    def queue_for(self, book_id: str) -> list[Reservation]:
        """PENDING reservations for a title in the order they will be served."""
        with self.db.session_scope() as session:
            if not BookRepository(session).exists(book_id):
                raise BookNotFoundError()
            return ReservationRepository(session).queue_for(book_id)

    def count_pending(self) -> int:
        with self.db.session_scope() as session:
            return ReservationRepository(session).count_pending()
