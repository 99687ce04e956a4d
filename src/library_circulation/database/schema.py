"""
SQLAlchemy database schema for the circulation engine.

The tables mirror the Pydantic models in ``library_circulation.models``. Two
partial unique indexes back the engine's core invariants at the storage level:

1. ``uq_loan_active_copy`` - at most one ISSUED loan per copy
2. ``uq_reservation_pending_member`` - at most one PENDING reservation per
   (book, member)

Copy rows carry a ``version`` counter; every status change is a conditional
update on (status, version) so two writers can never both win.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.copy import CopyStatus
from ..models.loan import LoanStatus
from ..models.member import MembershipTier, MemberStatus
from ..models.reservation import ReservationStatus

Base = declarative_base()


class Book(Base):
    """
    Books table - the slice of the catalog circulation depends on.

    Availability is never stored here; it is the live count of AVAILABLE
    copies. The row is locked while copies of the title are mutated.
    """

    __tablename__ = "books"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False)
    isbn = Column(String(13), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, default=func.now())

    copies = relationship("BookCopy", back_populates="book")
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        Index("idx_book_title", "title"),
        CheckConstraint("id LIKE 'book_%'", name="check_book_id_format"),
    )


class Member(Base):
    """
    Members table - borrowers and their borrowing caps.

    ``max_books_allowed`` is written at provisioning time from the tier table
    and only changes through explicit re-provisioning. The number of books
    currently borrowed is derived from ``loans``.
    """

    __tablename__ = "members"

    id = Column(String(50), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    tier = Column(Enum(MembershipTier), nullable=True)
    status = Column(Enum(MemberStatus), nullable=False, default=MemberStatus.ACTIVE)
    max_books_allowed = Column(Integer, nullable=False, default=3)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="member")
    reservations = relationship("Reservation", back_populates="member")

    __table_args__ = (
        Index("idx_member_status", "status"),
        CheckConstraint("id LIKE 'member_%'", name="check_member_id_format"),
        CheckConstraint("max_books_allowed >= 0", name="check_max_books_non_negative"),
    )


class BookCopy(Base):
    """
    Book copies table - one row per physical item.

    ``hold_reservation_id`` is set only while the copy is RESERVED and points
    at the FULFILLED reservation it is being held for.
    """

    __tablename__ = "book_copies"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    copy_number = Column(String(20), nullable=False)
    status = Column(Enum(CopyStatus), nullable=False, default=CopyStatus.AVAILABLE)
    location = Column(String(200), nullable=False, default="Main Library")
    hold_reservation_id = Column(
        String(50), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True
    )
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="copies")
    loans = relationship("Loan", back_populates="copy")

    __table_args__ = (
        UniqueConstraint("book_id", "copy_number", name="uq_copy_number_per_book"),
        Index("idx_copy_book_status", "book_id", "status"),
        CheckConstraint("id LIKE 'copy_%'", name="check_copy_id_format"),
        CheckConstraint("version >= 1", name="check_copy_version_positive"),
        CheckConstraint(
            "hold_reservation_id IS NULL OR status = 'RESERVED'",
            name="check_hold_only_when_reserved",
        ),
    )


class Loan(Base):
    """
    Loans table - one row per issue of a copy to a member.

    ``fine_amount`` is written once, together with the return.
    """

    __tablename__ = "loans"

    id = Column(String(50), primary_key=True)
    book_copy_id = Column(String(50), ForeignKey("book_copies.id"), nullable=False)
    member_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    issue_date = Column(DateTime, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(Enum(LoanStatus), nullable=False, default=LoanStatus.ISSUED)
    fine_amount = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copy = relationship("BookCopy", back_populates="loans")
    member = relationship("Member", back_populates="loans")

    __table_args__ = (
        Index("idx_loan_member_status", "member_id", "status"),
        Index("idx_loan_due_date", "due_date"),
        Index(
            "uq_loan_active_copy",
            "book_copy_id",
            unique=True,
            sqlite_where=text("status = 'ISSUED'"),
            postgresql_where=text("status = 'ISSUED'"),
        ),
        CheckConstraint("id LIKE 'loan_%'", name="check_loan_id_format"),
        CheckConstraint("fine_amount >= 0", name="check_loan_fine_non_negative"),
    )


class Reservation(Base):
    """
    Reservations table - the hold queue for exhausted titles.

    The queue order is (reservation_date, id); no position column is stored,
    so cancelling or expiring a reservation never renumbers the others.
    """

    __tablename__ = "reservations"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    member_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    reservation_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    fulfilled_date = Column(DateTime, nullable=True)
    pickup_deadline = Column(DateTime, nullable=True)
    status = Column(
        Enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING
    )

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="reservations")
    member = relationship("Member", back_populates="reservations")

    __table_args__ = (
        Index("idx_reservation_queue", "book_id", "status", "reservation_date"),
        Index("idx_reservation_member", "member_id"),
        Index(
            "uq_reservation_pending_member",
            "book_id",
            "member_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        CheckConstraint("id LIKE 'reservation_%'", name="check_reservation_id_format"),
        CheckConstraint("expiry_date > reservation_date", name="check_expiry_after_reservation"),
    )
