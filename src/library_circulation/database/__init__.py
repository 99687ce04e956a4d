"""
Database package for the circulation engine.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and transaction scoping (session.py)
- Repositories, the store interface the circulation components use
"""

from .book_repository import BookRepository
from .copy_repository import CopyRepository
from .loan_repository import LoanRepository
from .member_repository import MemberRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams, new_id
from .reservation_repository import ReservationRepository
from .schema import Base
from .session import DatabaseManager, get_db_manager, reset_db_manager

__all__ = [
    "Base",
    "BaseRepository",
    "BookRepository",
    "CopyRepository",
    "DatabaseManager",
    "LoanRepository",
    "MemberRepository",
    "PaginatedResponse",
    "PaginationParams",
    "ReservationRepository",
    "get_db_manager",
    "new_id",
    "reset_db_manager",
]
