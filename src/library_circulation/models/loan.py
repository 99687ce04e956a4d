"""
Loan models for the circulation engine.

A Loan is opened when a copy is issued and closed when it comes back. The fine
is computed once, at return, and never changes afterwards.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LoanStatus(str, Enum):
    """Status of a loan."""

    ISSUED = "ISSUED"
    RETURNED = "RETURNED"


class Loan(BaseModel):
    """A single loan of one copy to one member."""

    id: str = Field(
        ...,
        description="Unique identifier for the loan",
        pattern=r"^loan_[a-zA-Z0-9]{6,}$",
        examples=["loan_8c2d4e6f0a1b"],
    )

    book_copy_id: str = Field(
        ...,
        description="Copy that was issued",
    )

    member_id: str = Field(
        ...,
        description="Member who borrowed the copy",
    )

    issue_date: datetime = Field(
        ...,
        description="When the copy was issued",
    )

    due_date: date = Field(
        ...,
        description="Calendar date the copy is due back",
    )

    return_date: datetime | None = Field(
        None,
        description="When the copy was returned",
    )

    status: LoanStatus = Field(
        default=LoanStatus.ISSUED,
        description="Current status of the loan",
    )

    fine_amount: float = Field(
        default=0.0,
        description="Overdue fine recorded at return",
        ge=0.0,
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "Loan":
        """Validate date relationships."""
        if self.due_date < self.issue_date.date():
            raise ValueError("Due date cannot be before issue date")

        if self.status == LoanStatus.RETURNED and self.return_date is None:
            raise ValueError("Returned loans must have a return date")

        if self.return_date and self.return_date < self.issue_date:
            raise ValueError("Return date cannot be before issue date")

        return self

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ISSUED

    def is_overdue(self, today: date) -> bool:
        """Whether an open loan is past its due date on ``today``."""
        return self.is_active and today > self.due_date

    @property
    def loan_period_days(self) -> int:
        return (self.due_date - self.issue_date.date()).days

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
        validate_default=True,
        json_schema_extra={
            "example": {
                "id": "loan_8c2d4e6f0a1b",
                "book_copy_id": "copy_3f9a2c81d0e4",
                "member_id": "member_smith001",
                "issue_date": "2024-03-01T10:30:00",
                "due_date": "2024-03-15",
                "status": "ISSUED",
                "fine_amount": 0.0,
            }
        },
    )


class CirculationStats(BaseModel):
    """Loan statistics for dashboards."""

    active_loans: int
    overdue_loans: int
    issued_today: int
    returned_today: int
    pending_reservations: int
