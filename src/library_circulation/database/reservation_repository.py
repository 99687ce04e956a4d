"""
Reservation repository for the circulation engine.

The queue for a title is its PENDING reservations ordered by
(reservation_date, id). Status changes are conditional on the status the
caller expects, so a reservation cancelled concurrently is never fulfilled.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, update

from ..models.reservation import Reservation, ReservationStatus
from .repository import BaseRepository, PaginatedResponse, PaginationParams, new_id
from .schema import Reservation as ReservationDB


class ReservationRepository(BaseRepository[ReservationDB, Reservation]):
    """Repository for reservations."""

    @property
    def model_class(self) -> type[ReservationDB]:
        return ReservationDB

    def _to_response_model(self, db_obj: ReservationDB) -> Reservation:
        return Reservation.model_validate(db_obj, from_attributes=True)

    def lock(self, reservation_id: str) -> Reservation | None:
        db_obj = self._get_row(reservation_id, for_update=True)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def insert(
        self, book_id: str, member_id: str, reservation_date: datetime, expiry_date: datetime
    ) -> Reservation:
        db_obj = ReservationDB(
            id=new_id("reservation"),
            book_id=book_id,
            member_id=member_id,
            reservation_date=reservation_date,
            expiry_date=expiry_date,
            status=ReservationStatus.PENDING,
        )
        self.session.add(db_obj)
        self.session.flush()
        return self._to_response_model(db_obj)

    def has_pending(self, book_id: str, member_id: str) -> bool:
        query = (
            select(func.count())
            .select_from(ReservationDB)
            .where(
                and_(
                    ReservationDB.book_id == book_id,
                    ReservationDB.member_id == member_id,
                    ReservationDB.status == ReservationStatus.PENDING,
                )
            )
        )
        return (self.session.execute(query).scalar() or 0) > 0

    def _queue_query(self, book_id: str):
        return (
            select(ReservationDB)
            .where(
                ReservationDB.book_id == book_id,
                ReservationDB.status == ReservationStatus.PENDING,
            )
            .order_by(ReservationDB.reservation_date, ReservationDB.id)
        )

    def next_pending(
        self,
        book_id: str,
        skip: set[str] | frozenset[str] = frozenset(),
    ) -> Reservation | None:
        """
        Oldest PENDING reservation for a title, locked for update.

        Args:
            book_id: Title whose queue to read
            skip: Reservation ids to ignore
        """
        query = self._queue_query(book_id)
        if skip:
            query = query.where(ReservationDB.id.not_in(skip))
        query = query.limit(1).with_for_update().execution_options(populate_existing=True)
        db_obj = self.session.execute(query).scalar_one_or_none()
        return self._to_response_model(db_obj) if db_obj else None

    def queue_for(self, book_id: str) -> list[Reservation]:
        results = self.session.execute(self._queue_query(book_id)).scalars().all()
        return [self._to_response_model(r) for r in results]

    def transition(
        self,
        reservation_id: str,
        expected: ReservationStatus,
        new_status: ReservationStatus,
        **values: Any,
    ) -> Reservation | None:
        """
        Move a reservation from ``expected`` to ``new_status``.

        Returns:
            The updated reservation, or None if it was no longer ``expected``.
        """
        stmt = (
            update(ReservationDB)
            .where(ReservationDB.id == reservation_id, ReservationDB.status == expected)
            .values(status=new_status, updated_at=datetime.now(), **values)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return None

        query = (
            select(ReservationDB)
            .where(ReservationDB.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return self._to_response_model(self.session.execute(query).scalar_one())

    def pending_past_expiry(self, now: datetime) -> list[Reservation]:
        query = (
            select(ReservationDB)
            .where(
                ReservationDB.status == ReservationStatus.PENDING,
                ReservationDB.expiry_date < now,
            )
            .order_by(ReservationDB.expiry_date, ReservationDB.id)
        )
        return [self._to_response_model(r) for r in self.session.execute(query).scalars().all()]

    def list_reservations(
        self,
        status: ReservationStatus | None = None,
        member_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[Reservation]:
        query = select(ReservationDB)
        if status is not None:
            query = query.where(ReservationDB.status == status)
        if member_id:
            query = query.where(ReservationDB.member_id == member_id)
        query = query.order_by(ReservationDB.reservation_date.desc(), ReservationDB.id)
        return self._paginate(query, pagination)

    def count_pending(self) -> int:
        query = (
            select(func.count())
            .select_from(ReservationDB)
            .where(ReservationDB.status == ReservationStatus.PENDING)
        )
        return self.session.execute(query).scalar() or 0
