"""Test configuration and fixtures for the library circulation engine.

1. Isolated databases - each test gets its own SQLite file under tmp_path
2. Deterministic time - every component reads the same controllable clock
3. Seed helpers - factories for titles, copies and members
"""

import itertools
import os
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest

from library_circulation.circulation.services import CirculationServices, build_services
from library_circulation.config import CirculationConfig, reset_config
from library_circulation.database.book_repository import BookRepository
from library_circulation.database.session import DatabaseManager
from library_circulation.models import Book, BookCopy, Member, MembershipTier

# Spans and metrics are recorded locally only
logfire.configure(send_to_logfire=False, console=False)

START = datetime(2024, 3, 1, 10, 0, 0)


class FakeClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# === Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for each test."""
    return tmp_path / "test_circulation.db"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[CirculationConfig, None, None]:
    """Provide a test-specific configuration with the standard circulation policy."""
    reset_config()

    config = CirculationConfig(
        server_name="test-library-circulation",
        server_version="0.0.1-test",
        database_path=test_db_path,
        store_timeout_seconds=10.0,
        debug=True,
        log_level="DEBUG",
    )

    yield config

    reset_config()


@pytest.fixture
def db_manager(test_config: CirculationConfig) -> Generator[DatabaseManager, None, None]:
    """Provide a database manager with a freshly created schema."""
    manager = DatabaseManager(config=test_config)
    manager.init_database()

    yield manager

    manager.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(
    db_manager: DatabaseManager, test_config: CirculationConfig, clock: FakeClock
) -> CirculationServices:
    """All circulation components wired to the test store and clock."""
    return build_services(db_manager, test_config, clock)


# === Seed Helpers ===


@pytest.fixture
def make_book(db_manager: DatabaseManager) -> Callable[..., Book]:
    """Factory adding a title to the catalog."""
    counter = itertools.count(1)

    def _make(title: str = "Test Book", book_id: str | None = None) -> Book:
        with db_manager.session_scope() as session:
            return BookRepository(session).create(
                title=title, book_id=book_id or f"book_test{next(counter):03d}"
            )

    return _make


@pytest.fixture
def make_member(services: CirculationServices) -> Callable[..., Member]:
    """Factory provisioning an ACTIVE member."""
    counter = itertools.count(1)

    def _make(
        name: str = "Test Member", tier: MembershipTier | None = MembershipTier.STANDARD
    ) -> Member:
        n = next(counter)
        return services.gate.provision(
            name=name,
            email=f"member{n}@example.com",
            tier=tier,
            member_id=f"member_test{n:03d}",
        )

    return _make


@pytest.fixture
def book_with_copy(
    make_book: Callable[..., Book], services: CirculationServices
) -> tuple[Book, BookCopy]:
    """A title with exactly one AVAILABLE copy."""
    book = make_book("The Great Gatsby")
    copy = services.registry.register(book.id)
    return book, copy


# === Environment Fixtures ===


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Provide an environment without LIBRARY_CIRCULATION_* variables."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("LIBRARY_CIRCULATION_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)
