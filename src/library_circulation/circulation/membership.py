"""
Membership gate for the circulation engine.

Decides whether a member may take out another loan, and provisions members
with the borrowing cap their tier grants. The cap is copied onto the member
when they are provisioned; changing a tier later does nothing until the
member is explicitly re-provisioned.
"""

import logging
from enum import Enum

from ..database.member_repository import MemberRepository
from ..database.session import DatabaseManager
from ..errors import (
    DuplicateMemberError,
    LimitReachedError,
    MemberInactiveError,
    MemberNotFoundError,
)
from ..models.member import (
    DEFAULT_BORROWING_LIMIT,
    TIER_BORROWING_LIMITS,
    Member,
    MembershipTier,
    MemberStatus,
)
from ..observability import trace_operation

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    """Why a member may not borrow right now."""

    INACTIVE_MEMBER = "INACTIVE_MEMBER"
    LIMIT_REACHED = "LIMIT_REACHED"


def max_books_for_tier(tier: MembershipTier | str | None) -> int:
    """Borrowing cap for a tier; unknown or missing tiers get the default."""
    if tier is None:
        return DEFAULT_BORROWING_LIMIT
    try:
        return TIER_BORROWING_LIMITS[MembershipTier(tier)]
    except ValueError:
        return DEFAULT_BORROWING_LIMIT


class MembershipGate:
    """Eligibility checks and member provisioning."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def authorize_loan(member: Member) -> DenialReason | None:
        """Return None if the member may borrow, otherwise the reason they may not."""
        if member.status != MemberStatus.ACTIVE:
            return DenialReason.INACTIVE_MEMBER
        if member.current_borrowed >= member.max_books_allowed:
            return DenialReason.LIMIT_REACHED
        return None

    def ensure_can_borrow(self, member: Member) -> None:
        """Raise the matching policy error if ``authorize_loan`` denies the member."""
        match self.authorize_loan(member):
            case None:
                return
            case DenialReason.INACTIVE_MEMBER:
                raise MemberInactiveError()
            case DenialReason.LIMIT_REACHED:
                raise LimitReachedError(member.max_books_allowed)

    def get_member(self, member_id: str) -> Member | None:
        with self.db.session_scope() as session:
            return MemberRepository(session).get_by_id(member_id)

    @trace_operation("provision_member")
    def provision(
        self,
        name: str,
        email: str,
        tier: MembershipTier | None = MembershipTier.STANDARD,
        member_id: str | None = None,
    ) -> Member:
        """Create an ACTIVE member whose cap is taken from ``tier``."""
        with self.db.session_scope() as session:
            repo = MemberRepository(session)
            if repo.get_by_email(email) is not None:
                raise DuplicateMemberError()
            member = repo.create(
                name=name,
                email=email,
                tier=tier,
                max_books_allowed=max_books_for_tier(tier),
                member_id=member_id,
            )

        logger.info(
            "Provisioned member %s (tier=%s, max_books=%d)",
            member.id,
            member.tier,
            member.max_books_allowed,
        )
        return member

    @trace_operation("reprovision_member")
    def reprovision(self, member_id: str, tier: MembershipTier | None) -> Member:
        """
        Move a member to a new tier and recompute their cap.

        Raises:
            MemberNotFoundError: No such member
            LimitReachedError: The member already holds more loans than the new cap
        """
        with self.db.session_scope() as session:
            repo = MemberRepository(session)
            member = repo.lock(member_id)
            if member is None:
                raise MemberNotFoundError()

            new_limit = max_books_for_tier(tier)
            if member.current_borrowed > new_limit:
                raise LimitReachedError(
                    new_limit,
                    f"Member holds {member.current_borrowed} loans, more than the "
                    f"{new_limit} allowed for the new tier",
                )
            updated = repo.set_tier(member_id, tier, new_limit)

        logger.info(
            "Re-provisioned member %s: max_books %d -> %d",
            member_id,
            member.max_books_allowed,
            new_limit,
        )
        return updated

    def suspend(self, member_id: str) -> Member:
        return self._set_status(member_id, MemberStatus.SUSPENDED)

    def activate(self, member_id: str) -> Member:
        return self._set_status(member_id, MemberStatus.ACTIVE)

    def _set_status(self, member_id: str, status: MemberStatus) -> Member:
        with self.db.session_scope() as session:
            member = MemberRepository(session).set_status(member_id, status)
            if member is None:
                raise MemberNotFoundError()

        logger.info("Member %s is now %s", member_id, member.status)
        return member
