"""Tests for the schema, transaction scoping and store-level invariants."""

from datetime import date, datetime

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from library_circulation.database.book_repository import BookRepository
from library_circulation.database.copy_repository import CopyRepository
from library_circulation.database.repository import PaginationParams
from library_circulation.database.schema import Book as BookDB
from library_circulation.database.schema import Loan as LoanDB
from library_circulation.database.schema import Reservation as ReservationDB
from library_circulation.database.session import DatabaseManager
from library_circulation.errors import BookNotFoundError, StoreUnavailable
from library_circulation.models import CopyStatus, LoanStatus, ReservationStatus


class TestSchema:
    def test_tables_created(self, db_manager):
        tables = set(inspect(db_manager.engine).get_table_names())

        assert {"books", "book_copies", "members", "loans", "reservations"} <= tables

    def test_verify_connection(self, db_manager):
        assert db_manager.verify_connection() is True

    def test_in_memory_store(self, test_config):
        manager = DatabaseManager("sqlite:///:memory:", config=test_config)
        manager.init_database()

        with manager.session_scope() as session:
            BookRepository(session).create(title="Memory Book", book_id="book_memory01")
        with manager.session_scope() as session:
            assert BookRepository(session).exists("book_memory01")

        manager.close()


class TestSessionScope:
    def test_commit_on_success(self, db_manager):
        with db_manager.session_scope() as session:
            BookRepository(session).create(title="Committed", book_id="book_commit01")

        with db_manager.session_scope() as session:
            assert session.get(BookDB, "book_commit01") is not None

    def test_business_error_rolls_back_unchanged(self, db_manager):
        with pytest.raises(BookNotFoundError):
            with db_manager.session_scope() as session:
                BookRepository(session).create(title="Rolled Back", book_id="book_rollback1")
                raise BookNotFoundError()

        with db_manager.session_scope() as session:
            assert session.get(BookDB, "book_rollback1") is None

    def test_driver_error_becomes_store_unavailable(self, db_manager):
        with pytest.raises(StoreUnavailable) as exc_info:
            with db_manager.session_scope():
                raise SQLAlchemyError("connection reset")

        assert exc_info.value.retryable is True
        assert exc_info.value.to_dict()["category"] == "store_failure"
        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)


class TestStoreInvariants:
    """Constraints that hold even if the engine's own checks are bypassed."""

    def test_one_issued_loan_per_copy(self, services, db_manager, book_with_copy, make_member):
        _, copy = book_with_copy
        member = make_member()

        with pytest.raises(StoreUnavailable):
            with db_manager.session_scope() as session:
                for n in range(2):
                    session.add(
                        LoanDB(
                            id=f"loan_direct{n}",
                            book_copy_id=copy.id,
                            member_id=member.id,
                            issue_date=datetime(2024, 3, 1),
                            due_date=date(2024, 3, 15),
                            status=LoanStatus.ISSUED,
                        )
                    )
                session.flush()

    def test_one_pending_reservation_per_member_and_title(
        self, db_manager, book_with_copy, make_member
    ):
        book, _ = book_with_copy
        member = make_member()

        with pytest.raises(StoreUnavailable):
            with db_manager.session_scope() as session:
                for n in range(2):
                    session.add(
                        ReservationDB(
                            id=f"reservation_direct{n}",
                            book_id=book.id,
                            member_id=member.id,
                            reservation_date=datetime(2024, 3, 1),
                            expiry_date=datetime(2024, 3, 8),
                            status=ReservationStatus.PENDING,
                        )
                    )
                session.flush()

    def test_stale_version_loses_compare_and_swap(self, db_manager, book_with_copy):
        _, copy = book_with_copy

        with db_manager.session_scope() as session:
            copies = CopyRepository(session)
            first = copies.compare_and_set_status(copy, CopyStatus.DAMAGED)
            second = copies.compare_and_set_status(copy, CopyStatus.LOST)

        assert first is not None
        assert first.version == 2
        assert second is None

    def test_hold_requires_reserved_status(self, db_manager, book_with_copy):
        _, copy = book_with_copy

        with pytest.raises(StoreUnavailable):
            with db_manager.session_scope() as session:
                CopyRepository(session).compare_and_set_status(
                    copy, CopyStatus.AVAILABLE, hold_reservation_id="reservation_ghost1"
                )


class TestPagination:
    def test_paginated_history(self, services, make_book, make_member, clock):
        book = make_book()
        member = make_member()
        for _ in range(3):
            copy = services.registry.register(book.id)
            loan = services.engine.issue(copy.id, member.id)
            services.engine.return_loan(loan.id)
            clock.advance(days=1)

        page = services.engine.member_loans(member.id, PaginationParams(page=2, page_size=2))

        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.items) == 1
        assert page.has_previous and not page.has_next

    def test_page_size_is_bounded(self, services, make_member):
        member = make_member()

        with pytest.raises(ValueError):
            services.engine.member_loans(member.id, PaginationParams(page=1, page_size=500))

    def test_availability_lookup(self, db_manager, book_with_copy):
        book, _ = book_with_copy

        with db_manager.session_scope() as session:
            books = BookRepository(session)
            found = books.availability(book.id)
            missing = books.availability("book_missing01")
            listed = session.execute(select(BookDB.id)).scalars().all()

        assert found.exists and found.available_count == 1
        assert not missing.exists and missing.available_count == 0
        assert listed == [book.id]
