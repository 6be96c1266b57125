"""Test configuration and fixtures for the Library Circulation Service.

1. Isolated test databases - each test gets its own SQLite file
2. Configuration overrides - test settings installed as the global config
3. Seeded catalog - ten books, ten members, three categories
4. HTTP client - FastAPI TestClient with bearer tokens for each role
"""

from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import logfire
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from library_circulation.api.app import create_app
from library_circulation.api.auth import Role, create_access_token
from library_circulation.config import ServerConfig, reset_config, set_config
from library_circulation.database.schema import Book, Category, Member
from library_circulation.database.session import DatabaseManager, set_db_manager

TEST_JWT_SECRET = "test-secret-that-is-long-enough-for-hs256-signing"

# === Pytest Configuration ===


def pytest_configure(config):
    """Keep Logfire local during tests."""
    logfire.configure(send_to_logfire=False, console=False)


# === Configuration Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for each test."""
    return tmp_path / "test_library.db"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[ServerConfig, None, None]:
    """Provide a test configuration and install it as the global config."""
    config = ServerConfig(
        _env_file=None,
        environment="test",
        database_url=f"sqlite:///{test_db_path}",
        jwt_secret=TEST_JWT_SECRET,
        overdue_checks_enabled=False,
        logfire_enabled=False,
        sqlite_busy_timeout_seconds=10.0,
    )
    set_config(config)
    yield config
    reset_config()


# === Database Fixtures ===


@pytest.fixture
def db_manager(test_config: ServerConfig) -> Generator[DatabaseManager, None, None]:
    """Provide a database manager with the schema created."""
    manager = DatabaseManager(config=test_config)
    manager.init_database()
    set_db_manager(manager)
    yield manager
    set_db_manager(None)
    manager.close()


@pytest.fixture
def session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a bare session; tests commit explicitly when they need to."""
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@dataclass
class SeededLibrary:
    book_ids: list[int]
    member_ids: list[int]
    category_ids: dict[str, int]


@pytest.fixture
def seeded(db_manager: DatabaseManager) -> SeededLibrary:
    """
    Seed a small catalog.

    Books 1-10 and members 1-10 exist. Categories:
    - Fiction: books 1-5
    - History: books 4-7
    - Science: books 7-10
    """
    with db_manager.session_scope() as s:
        fiction = Category(name="Fiction")
        history = Category(name="History")
        science = Category(name="Science")
        s.add_all([fiction, history, science])

        for n in range(1, 11):
            categories = []
            if n <= 5:
                categories.append(fiction)
            if 4 <= n <= 7:
                categories.append(history)
            if n >= 7:
                categories.append(science)
            s.add(
                Book(
                    title=f"Book {n:02d}",
                    author=f"Author {chr(ord('A') + (n - 1) % 3)}",
                    isbn=f"978000000{n:04d}",
                    available=True,
                    categories=categories,
                )
            )

        for n in range(1, 11):
            s.add(Member(name=f"Member {n:02d}", email=f"member{n}@example.com"))

        s.flush()
        category_ids = {c.name: c.id for c in (fiction, history, science)}

    return SeededLibrary(
        book_ids=list(range(1, 11)),
        member_ids=list(range(1, 11)),
        category_ids=category_ids,
    )


# === HTTP Fixtures ===


@pytest.fixture
def client(test_config: ServerConfig, seeded: SeededLibrary) -> Generator[TestClient, None, None]:
    """Provide a TestClient running the full application lifespan."""
    app = create_app(test_config)
    with TestClient(app) as test_client:
        yield test_client


def _headers(user_id: int, username: str, role: Role) -> dict[str, str]:
    token = create_access_token(user_id, username, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def librarian_headers(test_config: ServerConfig) -> dict[str, str]:
    return _headers(2, "librarian", Role.LIBRARIAN)


@pytest.fixture
def admin_headers(test_config: ServerConfig) -> dict[str, str]:
    return _headers(1, "admin", Role.ADMIN)


@pytest.fixture
def member_headers(test_config: ServerConfig) -> dict[str, str]:
    return _headers(3, "Jane Reader", Role.MEMBER)
