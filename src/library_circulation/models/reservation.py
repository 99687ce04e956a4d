"""
Reservation models for the circulation engine.

Reservations queue members for titles with no copy on the shelf. They are
served strictly first-come first-served (reservation date, then id):

    PENDING --copy allocated--> FULFILLED
    PENDING --owner/staff--> CANCELLED
    PENDING --expiry date passes--> EXPIRED
    FULFILLED --pickup deadline passes, copy uncollected--> EXPIRED
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Reservation(BaseModel):
    """A member's hold on a title."""

    id: str = Field(
        ...,
        description="Unique identifier for the reservation",
        pattern=r"^reservation_[a-zA-Z0-9]{6,}$",
        examples=["reservation_5e7f9a1b3c2d"],
    )

    book_id: str = Field(
        ...,
        description="Title being reserved",
    )

    member_id: str = Field(
        ...,
        description="Member who placed the reservation",
    )

    reservation_date: datetime = Field(
        ...,
        description="When the reservation was placed",
    )

    expiry_date: datetime = Field(
        ...,
        description="When a still-pending reservation lapses",
    )

    fulfilled_date: datetime | None = Field(
        None,
        description="When a copy was allocated to the reservation",
    )

    pickup_deadline: datetime | None = Field(
        None,
        description="Deadline for collecting the held copy",
    )

    status: ReservationStatus = Field(
        default=ReservationStatus.PENDING,
        description="Current status of the reservation",
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "Reservation":
        if self.expiry_date <= self.reservation_date:
            raise ValueError("Expiry date must be after reservation date")
        return self

    @property
    def is_pending(self) -> bool:
        return self.status == ReservationStatus.PENDING

    def is_stale(self, now: datetime) -> bool:
        """Whether a pending reservation is past its expiry date."""
        return self.is_pending and now > self.expiry_date

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
        validate_default=True,
        json_schema_extra={
            "example": {
                "id": "reservation_5e7f9a1b3c2d",
                "book_id": "book_gatsby01",
                "member_id": "member_smith001",
                "reservation_date": "2024-03-01T10:30:00",
                "expiry_date": "2024-03-08T10:30:00",
                "status": "PENDING",
            }
        },
    )


class ExpirySweepResult(BaseModel):
    """Outcome of one reservation expiry sweep."""

    expired_pending: list[str] = Field(default_factory=list)
    expired_uncollected: list[str] = Field(default_factory=list)
    reallocated: dict[str, str] = Field(
        default_factory=dict,
        description="Copy id -> reservation id the released copy was offered to",
    )
    released_copies: list[str] = Field(
        default_factory=list,
        description="Copies returned to the shelf",
    )

    @property
    def expired_count(self) -> int:
        return len(self.expired_pending) + len(self.expired_uncollected)
