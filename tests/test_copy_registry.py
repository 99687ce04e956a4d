"""Tests for the copy registry and the copy status state machine."""

import pytest
from sqlalchemy import delete

from library_circulation.circulation.copy_registry import is_allowed, next_copy_number
from library_circulation.database.schema import BookCopy as CopyDB
from library_circulation.errors import (
    BookNotFoundError,
    CopyNotFoundError,
    InvalidTransitionError,
)
from library_circulation.models import CopyStatus, ReservationStatus


class TestCopyNumbers:
    """Sequential copy numbering per title."""

    def test_first_copy_is_number_one(self):
        assert next_copy_number([]) == "COPY-0001"

    def test_next_after_highest(self):
        assert next_copy_number(["COPY-0001", "COPY-0003", "COPY-0002"]) == "COPY-0004"

    def test_gaps_are_not_reused(self):
        assert next_copy_number(["COPY-0003"]) == "COPY-0004"

    def test_wide_numbers(self):
        assert next_copy_number(["COPY-9999"]) == "COPY-10000"

    def test_foreign_numbers_are_ignored(self):
        assert next_copy_number(["LEGACY-7", "COPY-0002"]) == "COPY-0003"

    def test_generate_after_three_copies(self, services, make_book, db_manager):
        book = make_book()
        first, second, _ = (services.registry.register(book.id) for _ in range(3))

        with db_manager.session_scope() as session:
            session.execute(delete(CopyDB).where(CopyDB.id == second.id))
            session.execute(delete(CopyDB).where(CopyDB.id == first.id))

        assert services.registry.generate_copy_number(book.id) == "COPY-0004"

    def test_numbering_is_scoped_to_title(self, services, make_book):
        gatsby = make_book("The Great Gatsby")
        dune = make_book("Dune")
        services.registry.register(gatsby.id)
        services.registry.register(gatsby.id)

        assert services.registry.register(dune.id).copy_number == "COPY-0001"


class TestRegister:
    def test_register_copy(self, services, make_book):
        book = make_book()

        copy = services.registry.register(book.id)

        assert copy.copy_number == "COPY-0001"
        assert copy.status == CopyStatus.AVAILABLE
        assert copy.location == "Main Library"
        assert copy.version == 1
        assert copy.hold_reservation_id is None

    def test_register_with_location(self, services, make_book):
        copy = services.registry.register(make_book().id, "Science Wing")

        assert copy.location == "Science Wing"

    def test_register_unknown_book(self, services):
        with pytest.raises(BookNotFoundError):
            services.registry.register("book_missing01")

    def test_list_and_find(self, services, make_book):
        book = make_book()
        first, second = (services.registry.register(book.id) for _ in range(2))
        services.registry.mark_lost(first.id)

        listed = services.registry.list_copies(book.id)

        assert [c.copy_number for c in listed] == ["COPY-0001", "COPY-0002"]
        assert services.registry.find_available(book.id).id == second.id

    def test_get_unknown_copy(self, services):
        with pytest.raises(CopyNotFoundError):
            services.registry.get_copy("copy_missing01")


class TestStateMachine:
    """Which status changes are allowed."""

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (CopyStatus.AVAILABLE, CopyStatus.ISSUED),
            (CopyStatus.ISSUED, CopyStatus.AVAILABLE),
            (CopyStatus.AVAILABLE, CopyStatus.RESERVED),
            (CopyStatus.RESERVED, CopyStatus.ISSUED),
            (CopyStatus.AVAILABLE, CopyStatus.DAMAGED),
            (CopyStatus.RESERVED, CopyStatus.LOST),
        ],
    )
    def test_allowed(self, current, new):
        assert is_allowed(current, new)

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (CopyStatus.ISSUED, CopyStatus.RESERVED),
            (CopyStatus.RESERVED, CopyStatus.AVAILABLE),
            (CopyStatus.DAMAGED, CopyStatus.AVAILABLE),
            (CopyStatus.LOST, CopyStatus.DAMAGED),
            (CopyStatus.AVAILABLE, CopyStatus.AVAILABLE),
        ],
    )
    def test_forbidden(self, current, new):
        assert not is_allowed(current, new)

    def test_return_resolution_changes(self):
        assert is_allowed(CopyStatus.ISSUED, CopyStatus.RESERVED, resolution=True)
        assert is_allowed(CopyStatus.RESERVED, CopyStatus.AVAILABLE, resolution=True)
        assert not is_allowed(CopyStatus.LOST, CopyStatus.AVAILABLE, resolution=True)


class TestSetStatus:
    def test_mark_damaged(self, services, book_with_copy):
        _, copy = book_with_copy

        damaged = services.registry.mark_damaged(copy.id)

        assert damaged.status == CopyStatus.DAMAGED
        assert damaged.version == copy.version + 1

    def test_terminal_status_is_final(self, services, book_with_copy):
        _, copy = book_with_copy
        services.registry.mark_lost(copy.id)

        with pytest.raises(InvalidTransitionError):
            services.registry.set_status(copy.id, CopyStatus.AVAILABLE)

    def test_copy_on_loan_cannot_be_written_off(self, services, book_with_copy, make_member):
        _, copy = book_with_copy
        services.engine.issue(copy.id, make_member().id)

        with pytest.raises(InvalidTransitionError):
            services.registry.mark_lost(copy.id)

        assert services.registry.get_copy(copy.id).status == CopyStatus.ISSUED

    def test_return_only_change_is_rejected(self, services, book_with_copy, make_member):
        _, copy = book_with_copy
        services.engine.issue(copy.id, make_member().id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            services.registry.set_status(copy.id, CopyStatus.RESERVED)

        assert exc_info.value.current_status == "ISSUED"
        assert exc_info.value.new_status == "RESERVED"

    def test_reserving_without_a_reservation_is_rejected(
        self, services, book_with_copy, make_member
    ):
        _, copy = book_with_copy

        with pytest.raises(InvalidTransitionError) as exc_info:
            services.registry.set_status(copy.id, CopyStatus.RESERVED)

        assert exc_info.value.current_status == "AVAILABLE"
        assert exc_info.value.new_status == "RESERVED"
        unchanged = services.registry.get_copy(copy.id)
        assert unchanged.status == CopyStatus.AVAILABLE
        assert unchanged.version == copy.version

        loan = services.engine.issue(copy.id, make_member().id)
        assert loan.book_copy_id == copy.id

    def test_writing_off_held_copy_cancels_hold(self, services, book_with_copy, make_member):
        book, copy = book_with_copy
        loan = services.engine.issue(copy.id, make_member().id)
        reservation = services.queue.reserve(book.id, make_member().id)
        services.engine.return_loan(loan.id)

        damaged = services.registry.mark_damaged(copy.id)

        assert damaged.hold_reservation_id is None
        cancelled = services.queue.get_reservation(reservation.id)
        assert cancelled.status == ReservationStatus.CANCELLED

    def test_unknown_copy(self, services):
        with pytest.raises(CopyNotFoundError):
            services.registry.mark_damaged("copy_missing01")

    def test_written_off_copy_does_not_count_as_available(
        self, services, book_with_copy, make_member
    ):
        book, copy = book_with_copy
        services.registry.mark_lost(copy.id)

        reservation = services.queue.reserve(book.id, make_member().id)

        assert reservation.is_pending
