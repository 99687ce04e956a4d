"""
Loan repository for the circulation engine.

Closing a loan is a conditional update on ``status = ISSUED``; a loan can
therefore be returned exactly once even if two returns race.
"""

from datetime import date, datetime, time

from sqlalchemy import desc, func, select, update

from ..models.loan import Loan, LoanStatus
from .repository import BaseRepository, PaginatedResponse, PaginationParams, new_id
from .schema import Loan as LoanDB


class LoanRepository(BaseRepository[LoanDB, Loan]):
    """Repository for loans."""

    @property
    def model_class(self) -> type[LoanDB]:
        return LoanDB

    def _to_response_model(self, db_obj: LoanDB) -> Loan:
        return Loan.model_validate(db_obj, from_attributes=True)

    def lock(self, loan_id: str) -> Loan | None:
        db_obj = self._get_row(loan_id, for_update=True)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def insert(self, copy_id: str, member_id: str, issue_date: datetime, due_date: date) -> Loan:
        db_obj = LoanDB(
            id=new_id("loan"),
            book_copy_id=copy_id,
            member_id=member_id,
            issue_date=issue_date,
            due_date=due_date,
            status=LoanStatus.ISSUED,
            fine_amount=0.0,
        )
        self.session.add(db_obj)
        self.session.flush()
        return self._to_response_model(db_obj)

    def close(self, loan_id: str, return_date: datetime, fine_amount: float) -> Loan | None:
        """
        Record the return of an ISSUED loan.

        Returns:
            The closed loan, or None if the loan was no longer ISSUED.
        """
        stmt = (
            update(LoanDB)
            .where(LoanDB.id == loan_id, LoanDB.status == LoanStatus.ISSUED)
            .values(
                status=LoanStatus.RETURNED,
                return_date=return_date,
                fine_amount=fine_amount,
                updated_at=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return None

        query = (
            select(LoanDB)
            .where(LoanDB.id == loan_id)
            .execution_options(populate_existing=True)
        )
        return self._to_response_model(self.session.execute(query).scalar_one())

    def active_for_copy(self, copy_id: str) -> Loan | None:
        query = select(LoanDB).where(
            LoanDB.book_copy_id == copy_id, LoanDB.status == LoanStatus.ISSUED
        )
        db_obj = self.session.execute(query).scalar_one_or_none()
        return self._to_response_model(db_obj) if db_obj else None

    def get_active(
        self,
        member_id: str | None = None,
        overdue_on: date | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[Loan]:
        """Open loans, soonest due first; ``overdue_on`` keeps only loans overdue on that date."""
        query = select(LoanDB).where(LoanDB.status == LoanStatus.ISSUED)
        if member_id:
            query = query.where(LoanDB.member_id == member_id)
        if overdue_on is not None:
            query = query.where(LoanDB.due_date < overdue_on)
        query = query.order_by(LoanDB.due_date, LoanDB.id)
        return self._paginate(query, pagination)

    def get_member_history(
        self, member_id: str, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[Loan]:
        query = (
            select(LoanDB)
            .where(LoanDB.member_id == member_id)
            .order_by(desc(LoanDB.issue_date), LoanDB.id)
        )
        return self._paginate(query, pagination)

    def count_active(self) -> int:
        query = select(func.count()).select_from(LoanDB).where(LoanDB.status == LoanStatus.ISSUED)
        return self.session.execute(query).scalar() or 0

    def count_overdue(self, today: date) -> int:
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.status == LoanStatus.ISSUED, LoanDB.due_date < today)
        )
        return self.session.execute(query).scalar() or 0

    def count_issued_on(self, day: date) -> int:
        start, end = _day_bounds(day)
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.issue_date >= start, LoanDB.issue_date < end)
        )
        return self.session.execute(query).scalar() or 0

    def count_returned_on(self, day: date) -> int:
        start, end = _day_bounds(day)
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.return_date >= start, LoanDB.return_date < end)
        )
        return self.session.execute(query).scalar() or 0


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, datetime.combine(date.fromordinal(day.toordinal() + 1), time.min)
