"""
Catalog view used by the circulation engine.

The engine owns no catalog metadata. It only needs to know whether a title
exists and how many of its copies are currently on the shelf.
"""

from pydantic import BaseModel, ConfigDict, Field


class Book(BaseModel):
    """A catalog title with its derived availability."""

    id: str = Field(
        ...,
        description="Unique identifier of the title",
        pattern=r"^book_[a-zA-Z0-9_]{3,}$",
        examples=["book_gatsby01", "book_9780134685479"],
    )

    title: str = Field(
        ...,
        description="Title of the book",
        min_length=1,
        max_length=500,
    )

    isbn: str | None = Field(
        None,
        description="ISBN-13 of the title, if known",
        pattern=r"^\d{13}$",
    )

    total_copies: int = Field(
        default=0,
        description="Number of registered copies",
        ge=0,
    )

    available_copies: int = Field(
        default=0,
        description="Number of copies currently AVAILABLE",
        ge=0,
    )

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    model_config = ConfigDict(
        validate_assignment=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "book_gatsby01",
                "title": "The Great Gatsby",
                "isbn": "9780743273565",
                "total_copies": 3,
                "available_copies": 1,
            }
        },
    )


class BookAvailability(BaseModel):
    """Answer to the catalog lookup: does the title exist, and how many copies are free."""

    book_id: str
    exists: bool
    available_count: int = Field(default=0, ge=0)
