"""
Repository pattern implementation for the circulation engine.

Repositories are the store interface the circulation components depend on.
They never commit: the component that owns an operation opens one
``session_scope()`` and hands its session to every repository it needs, so
all reads and writes of the operation share a single transaction.

Methods return Pydantic models, never live ORM rows, so nothing outside the
transaction can mutate the store by accident.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from .schema import Base

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


def new_id(prefix: str) -> str:
    """Generate a prefixed identifier such as ``loan_8c2d4e6f0a1b``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Typed page of results returned by list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository providing lookups and pagination.

    Subclasses add the domain-specific reads and the conditional writes the
    circulation components need.
    """

    def __init__(self, session: Session):
        """Initialize repository with the operation's session."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @abstractmethod
    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert a database row to its Pydantic model."""

    def _get_row(self, id: str, *, for_update: bool = False) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == id)
        if for_update:
            # Refresh rows this session already loaded before the lock was taken
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(query).scalar_one_or_none()

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """Get entity by ID, or None if it does not exist."""
        db_obj = self._get_row(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def exists(self, id: str) -> bool:
        """Check if entity exists by ID."""
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        return (self.session.execute(query).scalar() or 0) > 0

    def _paginate(
        self, query: Select[Any], pagination: PaginationParams | None
    ) -> PaginatedResponse[ResponseSchemaType]:
        """Run ``query`` one page at a time."""
        if not pagination:
            pagination = PaginationParams()

        pagination.validate_params()

        count_query = select(func.count()).select_from(query.subquery())
        total = self.session.execute(count_query).scalar() or 0

        page_query = query.offset(pagination.offset).limit(pagination.page_size)
        results = self.session.execute(page_query).scalars().all()

        return PaginatedResponse(
            items=[self._to_response_model(item) for item in results],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )
