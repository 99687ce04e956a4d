"""
Catalog repository for the circulation engine.

Circulation only needs three things from the catalog: whether a title exists,
how many of its copies are AVAILABLE, and a row lock on the title while its
copies are being mutated (copy registration, returns, reservations).
"""

from sqlalchemy import func, select

from ..models.book import Book, BookAvailability
from ..models.copy import CopyStatus
from .repository import BaseRepository, new_id
from .schema import Book as BookDB
from .schema import BookCopy as CopyDB


class BookRepository(BaseRepository[BookDB, Book]):
    """Repository for catalog titles."""

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    def _to_response_model(self, db_obj: BookDB) -> Book:
        total, available = self._copy_counts(db_obj.id)
        return Book(
            id=db_obj.id,
            title=db_obj.title,
            isbn=db_obj.isbn,
            total_copies=total,
            available_copies=available,
        )

    def _copy_counts(self, book_id: str) -> tuple[int, int]:
        total = self.session.execute(
            select(func.count()).select_from(CopyDB).where(CopyDB.book_id == book_id)
        ).scalar()
        return total or 0, self.count_available(book_id)

    def create(self, title: str, isbn: str | None = None, book_id: str | None = None) -> Book:
        """Add a title to the catalog. Catalog CRUD proper lives outside the engine."""
        db_obj = BookDB(id=book_id or new_id("book"), title=title, isbn=isbn)
        self.session.add(db_obj)
        self.session.flush()
        return self._to_response_model(db_obj)

    def lock(self, book_id: str) -> bool:
        """Lock the title row for the rest of the transaction; False if it does not exist."""
        return self._get_row(book_id, for_update=True) is not None

    def count_available(self, book_id: str) -> int:
        query = (
            select(func.count())
            .select_from(CopyDB)
            .where(CopyDB.book_id == book_id, CopyDB.status == CopyStatus.AVAILABLE)
        )
        return self.session.execute(query).scalar() or 0

    def availability(self, book_id: str) -> BookAvailability:
        """Catalog lookup: does the title exist, and how many copies are on the shelf."""
        if not self.exists(book_id):
            return BookAvailability(book_id=book_id, exists=False, available_count=0)
        return BookAvailability(
            book_id=book_id, exists=True, available_count=self.count_available(book_id)
        )
