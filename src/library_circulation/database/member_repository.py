"""
Member repository for the circulation engine.

``current_borrowed`` is computed on every read from the live count of ISSUED
loans, so it can never drift from the loans table.
"""

from datetime import datetime

from sqlalchemy import func, select

from ..models.loan import LoanStatus
from ..models.member import Member, MembershipTier, MemberStatus
from .repository import BaseRepository, PaginatedResponse, PaginationParams, new_id
from .schema import Loan as LoanDB
from .schema import Member as MemberDB


class MemberRepository(BaseRepository[MemberDB, Member]):
    """Repository for members."""

    @property
    def model_class(self) -> type[MemberDB]:
        return MemberDB

    def _to_response_model(self, db_obj: MemberDB) -> Member:
        return Member(
            id=db_obj.id,
            name=db_obj.name,
            email=db_obj.email,
            tier=db_obj.tier,
            status=db_obj.status,
            max_books_allowed=db_obj.max_books_allowed,
            current_borrowed=self.count_borrowed(db_obj.id),
            created_at=db_obj.created_at,
        )

    def count_borrowed(self, member_id: str) -> int:
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.member_id == member_id, LoanDB.status == LoanStatus.ISSUED)
        )
        return self.session.execute(query).scalar() or 0

    def get_by_email(self, email: str) -> Member | None:
        query = select(MemberDB).where(MemberDB.email == email.strip().lower())
        db_obj = self.session.execute(query).scalar_one_or_none()
        return self._to_response_model(db_obj) if db_obj else None

    def lock(self, member_id: str) -> Member | None:
        """Read a member and lock its row so concurrent issues are counted in turn."""
        db_obj = self._get_row(member_id, for_update=True)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def create(
        self,
        name: str,
        email: str,
        tier: MembershipTier | None,
        max_books_allowed: int,
        member_id: str | None = None,
    ) -> Member:
        db_obj = MemberDB(
            id=member_id or new_id("member"),
            name=name,
            email=email.strip().lower(),
            tier=tier,
            status=MemberStatus.ACTIVE,
            max_books_allowed=max_books_allowed,
            created_at=datetime.now(),
        )
        self.session.add(db_obj)
        self.session.flush()
        return self._to_response_model(db_obj)

    def set_status(self, member_id: str, status: MemberStatus) -> Member | None:
        db_obj = self._get_row(member_id, for_update=True)
        if db_obj is None:
            return None
        db_obj.status = status
        self.session.flush()
        return self._to_response_model(db_obj)

    def set_tier(
        self, member_id: str, tier: MembershipTier | None, max_books_allowed: int
    ) -> Member | None:
        db_obj = self._get_row(member_id, for_update=True)
        if db_obj is None:
            return None
        db_obj.tier = tier
        db_obj.max_books_allowed = max_books_allowed
        self.session.flush()
        return self._to_response_model(db_obj)

    def list_members(
        self, status: MemberStatus | None = None, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[Member]:
        query = select(MemberDB).order_by(MemberDB.created_at, MemberDB.id)
        if status is not None:
            query = query.where(MemberDB.status == status)
        return self._paginate(query, pagination)
