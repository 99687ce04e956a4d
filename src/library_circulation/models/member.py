"""
Member model for the circulation engine.

A member's borrowing cap is derived from their membership tier once, when the
member is provisioned, and is not recomputed afterwards. Changing it takes an
explicit re-provisioning.

``current_borrowed`` is never stored: repositories fill it in from the live
count of ISSUED loans for the member.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class MemberStatus(str, Enum):
    """Membership status."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class MembershipTier(str, Enum):
    """Membership tiers and the borrowing caps they grant."""

    STANDARD = "STANDARD"
    STUDENT = "STUDENT"
    PREMIUM = "PREMIUM"


TIER_BORROWING_LIMITS: dict[MembershipTier, int] = {
    MembershipTier.STANDARD: 3,
    MembershipTier.STUDENT: 5,
    MembershipTier.PREMIUM: 10,
}

DEFAULT_BORROWING_LIMIT = 3


class Member(BaseModel):
    """A library member as seen by the circulation engine."""

    id: str = Field(
        ...,
        description="Unique identifier for the member",
        pattern=r"^member_[a-zA-Z0-9_]{6,}$",
        examples=["member_smith001", "member_4b1f0c2a9e77"],
    )

    name: str = Field(
        ...,
        description="Full name of the member",
        min_length=1,
        max_length=200,
    )

    email: EmailStr = Field(
        ...,
        description="Contact email address",
    )

    tier: MembershipTier | None = Field(
        default=MembershipTier.STANDARD,
        description="Membership tier the borrowing cap was derived from",
    )

    status: MemberStatus = Field(
        default=MemberStatus.ACTIVE,
        description="Current membership status",
    )

    max_books_allowed: int = Field(
        default=DEFAULT_BORROWING_LIMIT,
        description="Maximum number of concurrent loans",
        ge=0,
    )

    current_borrowed: int = Field(
        default=0,
        description="Live count of ISSUED loans held by the member",
        ge=0,
    )

    created_at: datetime = Field(
        default_factory=datetime.now,
        description="When the member was provisioned",
    )

    @model_validator(mode="after")
    def validate_borrowing(self) -> "Member":
        """A stored member can never hold more loans than the cap allows."""
        if self.current_borrowed > self.max_books_allowed:
            raise ValueError("Current borrowed count cannot exceed max books allowed")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    @property
    def remaining_allowance(self) -> int:
        if not self.is_active:
            return 0
        return max(0, self.max_books_allowed - self.current_borrowed)

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
        validate_default=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "id": "member_smith001",
                "name": "John Smith",
                "email": "john.smith@example.com",
                "tier": "STUDENT",
                "status": "ACTIVE",
                "max_books_allowed": 5,
                "current_borrowed": 2,
            }
        },
    )
