"""
Book copy repository for the circulation engine.

Status writes go through ``compare_and_set_status``: a single conditional
UPDATE guarded by the status and version the caller read. If another writer
got there first the update touches no row and the caller sees ``False``.
"""

from datetime import datetime

from sqlalchemy import select, update

from ..models.copy import BookCopy, CopyStatus
from .repository import BaseRepository, new_id
from .schema import BookCopy as CopyDB
from .schema import Reservation as ReservationDB


class CopyRepository(BaseRepository[CopyDB, BookCopy]):
    """Repository for physical copies."""

    @property
    def model_class(self) -> type[CopyDB]:
        return CopyDB

    def _to_response_model(self, db_obj: CopyDB) -> BookCopy:
        return BookCopy.model_validate(db_obj, from_attributes=True)

    def _reload(self, copy_id: str) -> BookCopy:
        query = (
            select(CopyDB)
            .where(CopyDB.id == copy_id)
            .execution_options(populate_existing=True)
        )
        return self._to_response_model(self.session.execute(query).scalar_one())

    def lock(self, copy_id: str) -> BookCopy | None:
        """Read a copy and lock its row for the rest of the transaction."""
        db_obj = self._get_row(copy_id, for_update=True)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def insert(self, book_id: str, copy_number: str, location: str) -> BookCopy:
        db_obj = CopyDB(
            id=new_id("copy"),
            book_id=book_id,
            copy_number=copy_number,
            status=CopyStatus.AVAILABLE,
            location=location,
            version=1,
        )
        self.session.add(db_obj)
        self.session.flush()
        return self._to_response_model(db_obj)

    def copy_numbers(self, book_id: str) -> list[str]:
        """All copy numbers ever registered for a title."""
        query = select(CopyDB.copy_number).where(CopyDB.book_id == book_id)
        return list(self.session.execute(query).scalars().all())

    def list_by_book(self, book_id: str) -> list[BookCopy]:
        query = select(CopyDB).where(CopyDB.book_id == book_id).order_by(CopyDB.copy_number)
        return [self._to_response_model(c) for c in self.session.execute(query).scalars().all()]

    def find_available(self, book_id: str) -> BookCopy | None:
        """First AVAILABLE copy of a title, lowest copy number first."""
        query = (
            select(CopyDB)
            .where(CopyDB.book_id == book_id, CopyDB.status == CopyStatus.AVAILABLE)
            .order_by(CopyDB.copy_number)
            .limit(1)
        )
        db_obj = self.session.execute(query).scalar_one_or_none()
        return self._to_response_model(db_obj) if db_obj else None

    def find_held_for(self, reservation_id: str) -> BookCopy | None:
        """The RESERVED copy being held for a reservation, if any."""
        query = select(CopyDB).where(
            CopyDB.hold_reservation_id == reservation_id,
            CopyDB.status == CopyStatus.RESERVED,
        )
        db_obj = self.session.execute(query).scalar_one_or_none()
        return self._to_response_model(db_obj) if db_obj else None

    def held_copies_past_pickup(self, now: datetime) -> list[BookCopy]:
        """RESERVED copies whose holder missed the pickup deadline."""
        query = (
            select(CopyDB)
            .join(ReservationDB, CopyDB.hold_reservation_id == ReservationDB.id)
            .where(
                CopyDB.status == CopyStatus.RESERVED,
                ReservationDB.pickup_deadline.is_not(None),
                ReservationDB.pickup_deadline < now,
            )
            .order_by(ReservationDB.pickup_deadline, CopyDB.id)
        )
        return [self._to_response_model(c) for c in self.session.execute(query).scalars().all()]

    def compare_and_set_status(
        self,
        copy: BookCopy,
        new_status: CopyStatus,
        hold_reservation_id: str | None = None,
    ) -> BookCopy | None:
        """
        Move ``copy`` to ``new_status`` if nobody changed it since it was read.

        Returns:
            The updated copy, or None if the row's status or version no longer
            match ``copy`` (another writer won).
        """
        stmt = (
            update(CopyDB)
            .where(
                CopyDB.id == copy.id,
                CopyDB.status == CopyStatus(copy.status),
                CopyDB.version == copy.version,
            )
            .values(
                status=new_status,
                version=CopyDB.version + 1,
                hold_reservation_id=hold_reservation_id,
                updated_at=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            return None
        return self._reload(copy.id)
