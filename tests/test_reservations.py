"""Tests for the reservation queue: placing, cancelling, allocation and expiry."""

from datetime import timedelta

import pytest

from library_circulation.errors import (
    BookAvailableError,
    BookNotFoundError,
    CopyUnavailableError,
    DuplicateReservationError,
    MemberInactiveError,
    MemberNotFoundError,
    NotAuthorizedError,
    NotPendingError,
    ReservationNotFoundError,
)
from library_circulation.models import CopyStatus, ReservationStatus, Role


@pytest.fixture
def exhausted(services, book_with_copy, make_member):
    """A title whose only copy is on loan."""
    book, copy = book_with_copy
    borrower = make_member("Borrower")
    loan = services.engine.issue(copy.id, borrower.id)
    return book, copy, loan


class TestReserve:
    """Placing reservations."""

    def test_reserve_when_copies_available(self, services, book_with_copy, make_member):
        book, _ = book_with_copy

        with pytest.raises(BookAvailableError) as exc_info:
            services.queue.reserve(book.id, make_member().id)

        assert exc_info.value.reason == "BookAvailable"
        assert services.queue.count_pending() == 0

    def test_reserve_exhausted_title(self, services, exhausted, make_member, clock):
        book, _, _ = exhausted
        member = make_member()

        reservation = services.queue.reserve(book.id, member.id)

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.reservation_date == clock.now
        assert reservation.expiry_date == clock.now + timedelta(days=7)
        assert reservation.pickup_deadline is None

    def test_reserve_title_with_no_copies(self, services, make_book, make_member):
        book = make_book()

        reservation = services.queue.reserve(book.id, make_member().id)

        assert reservation.is_pending

    def test_duplicate_reservation(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        services.queue.reserve(book.id, member.id)

        with pytest.raises(DuplicateReservationError):
            services.queue.reserve(book.id, member.id)

    def test_reserve_again_after_cancelling(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        first = services.queue.reserve(book.id, member.id)
        services.queue.cancel(first.id, member.id, Role.MEMBER)

        second = services.queue.reserve(book.id, member.id)

        assert second.id != first.id

    def test_unknown_member(self, services, exhausted):
        book, _, _ = exhausted

        with pytest.raises(MemberNotFoundError):
            services.queue.reserve(book.id, "member_missing01")

    def test_unknown_book(self, services, make_member):
        with pytest.raises(BookNotFoundError):
            services.queue.reserve("book_missing01", make_member().id)

    def test_suspended_member(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        services.gate.suspend(member.id)

        with pytest.raises(MemberInactiveError):
            services.queue.reserve(book.id, member.id)


class TestCancel:
    """Cancelling reservations."""

    def test_owner_can_cancel(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        reservation = services.queue.reserve(book.id, member.id)

        cancelled = services.queue.cancel(reservation.id, member.id, Role.MEMBER)

        assert cancelled.status == ReservationStatus.CANCELLED

    @pytest.mark.parametrize("role", [Role.LIBRARIAN, Role.ADMIN, "LIBRARIAN"])
    def test_staff_can_cancel(self, services, exhausted, make_member, role):
        book, _, _ = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)

        cancelled = services.queue.cancel(reservation.id, "member_staff001", role)

        assert cancelled.status == ReservationStatus.CANCELLED

    def test_other_member_cannot_cancel(self, services, exhausted, make_member):
        book, _, _ = exhausted
        owner = make_member()
        other = make_member()
        reservation = services.queue.reserve(book.id, owner.id)

        with pytest.raises(NotAuthorizedError):
            services.queue.cancel(reservation.id, other.id, Role.MEMBER)

        assert services.queue.get_reservation(reservation.id).is_pending

    def test_unknown_role_cannot_cancel(self, services, exhausted, make_member):
        book, _, _ = exhausted
        owner = make_member()
        reservation = services.queue.reserve(book.id, owner.id)

        with pytest.raises(NotAuthorizedError) as exc_info:
            services.queue.cancel(reservation.id, owner.id, "JANITOR")

        assert exc_info.value.reason == "NotAuthorized"
        assert services.queue.get_reservation(reservation.id).is_pending

    def test_cancel_twice(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        reservation = services.queue.reserve(book.id, member.id)
        services.queue.cancel(reservation.id, member.id, Role.MEMBER)

        with pytest.raises(NotPendingError):
            services.queue.cancel(reservation.id, member.id, Role.MEMBER)

    def test_cancel_unknown(self, services):
        with pytest.raises(ReservationNotFoundError) as exc_info:
            services.queue.cancel("reservation_missing01", "member_test001", Role.ADMIN)

        assert exc_info.value.reason == "NotFound"


class TestAllocation:
    """Handing returned copies to the queue."""

    def test_return_fulfils_pending_reservation(self, services, exhausted, make_member, clock):
        book, copy, loan = exhausted
        waiting = make_member()
        reservation = services.queue.reserve(book.id, waiting.id)

        clock.advance(days=2)
        services.engine.return_loan(loan.id)

        held = services.registry.get_copy(copy.id)
        fulfilled = services.queue.get_reservation(reservation.id)
        assert held.status == CopyStatus.RESERVED
        assert held.hold_reservation_id == reservation.id
        assert fulfilled.status == ReservationStatus.FULFILLED
        assert fulfilled.fulfilled_date == clock.now
        assert fulfilled.pickup_deadline == clock.now + timedelta(days=3)

    def test_oldest_reservation_served_first(self, services, exhausted, make_member, clock):
        book, copy, loan = exhausted
        first = services.queue.reserve(book.id, make_member().id)
        clock.advance(hours=1)
        second = services.queue.reserve(book.id, make_member().id)

        assert [r.id for r in services.queue.queue_for(book.id)] == [first.id, second.id]

        services.engine.return_loan(loan.id)

        assert services.registry.get_copy(copy.id).hold_reservation_id == first.id
        assert [r.id for r in services.queue.queue_for(book.id)] == [second.id]

    def test_lapsed_reservation_is_expired_and_next_one_served(
        self, services, exhausted, make_member, clock
    ):
        book, copy, loan = exhausted
        lapsed = services.queue.reserve(book.id, make_member().id)
        clock.advance(days=5)
        current = services.queue.reserve(book.id, make_member().id)

        clock.advance(days=3)
        services.engine.return_loan(loan.id)

        assert services.registry.get_copy(copy.id).hold_reservation_id == current.id
        assert services.queue.get_reservation(lapsed.id).status == ReservationStatus.EXPIRED
        assert services.queue.get_reservation(current.id).status == ReservationStatus.FULFILLED

    def test_on_time_return_after_reservation_lapsed(
        self, services, exhausted, make_member, clock
    ):
        book, copy, loan = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)

        clock.advance(days=10)
        returned = services.engine.return_loan(loan.id)

        assert returned.fine_amount == 0.0
        assert services.registry.get_copy(copy.id).status == CopyStatus.AVAILABLE
        assert services.queue.get_reservation(reservation.id).status == ReservationStatus.EXPIRED
        assert services.queue.queue_for(book.id) == []

    def test_holder_collects_reserved_copy(self, services, exhausted, make_member):
        book, copy, loan = exhausted
        waiting = make_member()
        services.queue.reserve(book.id, waiting.id)
        services.engine.return_loan(loan.id)

        collected = services.engine.issue(copy.id, waiting.id)

        issued = services.registry.get_copy(copy.id)
        assert collected.member_id == waiting.id
        assert issued.status == CopyStatus.ISSUED
        assert issued.hold_reservation_id is None

    def test_non_holder_cannot_take_reserved_copy(self, services, exhausted, make_member):
        book, copy, loan = exhausted
        services.queue.reserve(book.id, make_member().id)
        services.engine.return_loan(loan.id)

        with pytest.raises(CopyUnavailableError) as exc_info:
            services.engine.issue(copy.id, make_member().id)

        assert exc_info.value.current_status == "RESERVED"

    def test_held_copy_does_not_count_as_available(self, services, exhausted, make_member):
        book, _, loan = exhausted
        services.queue.reserve(book.id, make_member().id)
        services.engine.return_loan(loan.id)

        reservation = services.queue.reserve(book.id, make_member().id)

        assert reservation.is_pending


class TestExpiry:
    """The maintenance sweep."""

    def test_pending_reservation_expires(self, services, exhausted, make_member, clock):
        book, _, _ = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)

        clock.advance(days=8)
        result = services.queue.expire_stale()

        assert result.expired_pending == [reservation.id]
        assert result.expired_count == 1
        assert services.queue.get_reservation(reservation.id).status == ReservationStatus.EXPIRED

    def test_live_reservations_are_kept(self, services, exhausted, make_member, clock):
        book, _, _ = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)

        clock.advance(days=6)
        result = services.queue.expire_stale()

        assert result.expired_count == 0
        assert services.queue.get_reservation(reservation.id).is_pending

    def test_explicit_now_overrides_clock(self, services, exhausted, make_member, clock):
        book, _, _ = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)

        result = services.queue.expire_stale(clock.now + timedelta(days=30))

        assert result.expired_pending == [reservation.id]

    def test_uncollected_copy_passes_to_next_in_queue(
        self, services, exhausted, make_member, clock
    ):
        book, copy, loan = exhausted
        first = services.queue.reserve(book.id, make_member().id)
        clock.advance(hours=1)
        second = services.queue.reserve(book.id, make_member().id)
        clock.advance(days=2)
        services.engine.return_loan(loan.id)

        clock.advance(days=4)
        result = services.queue.expire_stale()

        assert result.expired_uncollected == [first.id]
        assert result.reallocated == {copy.id: second.id}
        assert services.queue.get_reservation(first.id).status == ReservationStatus.EXPIRED
        assert services.queue.get_reservation(second.id).status == ReservationStatus.FULFILLED
        held = services.registry.get_copy(copy.id)
        assert held.status == CopyStatus.RESERVED
        assert held.hold_reservation_id == second.id

    def test_uncollected_copy_returns_to_shelf(self, services, exhausted, make_member, clock):
        book, copy, loan = exhausted
        reservation = services.queue.reserve(book.id, make_member().id)
        services.engine.return_loan(loan.id)

        clock.advance(days=4)
        result = services.queue.expire_stale()

        assert result.expired_uncollected == [reservation.id]
        assert result.released_copies == [copy.id]
        released = services.registry.get_copy(copy.id)
        assert released.status == CopyStatus.AVAILABLE
        assert released.hold_reservation_id is None

    def test_collected_hold_is_not_expired(self, services, exhausted, make_member, clock):
        book, copy, loan = exhausted
        waiting = make_member()
        reservation = services.queue.reserve(book.id, waiting.id)
        services.engine.return_loan(loan.id)
        services.engine.issue(copy.id, waiting.id)

        clock.advance(days=10)
        result = services.queue.expire_stale()

        assert result.expired_count == 0
        assert services.queue.get_reservation(reservation.id).status == ReservationStatus.FULFILLED
        assert services.registry.get_copy(copy.id).status == CopyStatus.ISSUED


class TestQueries:
    def test_member_reservations(self, services, exhausted, make_member):
        book, _, _ = exhausted
        member = make_member()
        services.queue.reserve(book.id, member.id)

        page = services.queue.member_reservations(member.id)

        assert page.total == 1
        assert page.items[0].member_id == member.id

    def test_list_by_status(self, services, exhausted, make_member):
        book, _, _ = exhausted
        keep = services.queue.reserve(book.id, make_member().id)
        owner = make_member()
        drop = services.queue.reserve(book.id, owner.id)
        services.queue.cancel(drop.id, owner.id, Role.MEMBER)

        pending = services.queue.list_reservations(status=ReservationStatus.PENDING)

        assert [r.id for r in pending.items] == [keep.id]

    def test_queue_for_unknown_book(self, services):
        with pytest.raises(BookNotFoundError):
            services.queue.queue_for("book_missing01")
