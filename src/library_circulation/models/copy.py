"""
Book copy model for the circulation engine.

A BookCopy is one physical item on the shelf. Its status is the heart of the
circulation state machine:

    AVAILABLE --issue--> ISSUED --return--> AVAILABLE
    ISSUED --return (pending reservation)--> RESERVED --collect--> ISSUED
    any non-terminal status --> DAMAGED | LOST (terminal)
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

COPY_NUMBER_PREFIX = "COPY-"


def format_copy_number(sequence: int) -> str:
    """Format a copy sequence as a zero-padded ordinal, e.g. ``COPY-0007``."""
    return f"{COPY_NUMBER_PREFIX}{sequence:04d}"


class CopyStatus(str, Enum):
    """Status of a physical copy."""

    AVAILABLE = "AVAILABLE"
    ISSUED = "ISSUED"
    RESERVED = "RESERVED"
    DAMAGED = "DAMAGED"
    LOST = "LOST"

    @property
    def is_terminal(self) -> bool:
        return self in (CopyStatus.DAMAGED, CopyStatus.LOST)


class BookCopy(BaseModel):
    """A physical copy of a catalog title."""

    id: str = Field(
        ...,
        description="Unique identifier for the copy",
        pattern=r"^copy_[a-zA-Z0-9]{6,}$",
        examples=["copy_3f9a2c81d0e4"],
    )

    book_id: str = Field(
        ...,
        description="Catalog title this copy belongs to",
    )

    copy_number: str = Field(
        ...,
        description="Sequential copy number scoped to the title",
        pattern=r"^COPY-\d{4,}$",
        examples=["COPY-0001", "COPY-0007"],
    )

    status: CopyStatus = Field(
        default=CopyStatus.AVAILABLE,
        description="Current circulation status",
    )

    location: str = Field(
        default="Main Library",
        description="Shelf location of the copy",
        max_length=200,
    )

    hold_reservation_id: str | None = Field(
        None,
        description="Reservation this copy is held for while RESERVED",
    )

    version: int = Field(
        default=1,
        description="Optimistic concurrency version, bumped on every status change",
        ge=1,
    )

    created_at: datetime = Field(
        default_factory=datetime.now,
        description="When the copy was registered",
    )

    @field_validator("location")
    @classmethod
    def normalize_location(cls, v: str) -> str:
        return v.strip() or "Main Library"

    @property
    def sequence(self) -> int:
        """Numeric suffix of the copy number."""
        return int(self.copy_number.removeprefix(COPY_NUMBER_PREFIX))

    @property
    def is_available(self) -> bool:
        return self.status == CopyStatus.AVAILABLE

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
        validate_default=True,
        json_schema_extra={
            "example": {
                "id": "copy_3f9a2c81d0e4",
                "book_id": "book_gatsby01",
                "copy_number": "COPY-0001",
                "status": "AVAILABLE",
                "location": "Main Library",
            }
        },
    )
