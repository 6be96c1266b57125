"""
Database package for the Library Circulation Service.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- Repositories for books, members, loans and the borrow / return engine

The database is the single source of truth. Mutual exclusion between
concurrent borrows is delegated to it (guarded UPDATEs plus a partial unique
index), never to in-process locks.
"""

from .book_repository import BookRepository, BookSearchParams
from .circulation_repository import CirculationRepository
from .exceptions import (
    ConflictError,
    DuplicateError,
    InfrastructureError,
    NotFoundError,
    RepositoryException,
    ValidationError,
)
from .loan_repository import LoanRepository, LoanSearchParams, loan_status_expression
from .member_repository import MemberRepository, MemberSearchParams
from .repository import (
    BaseRepository,
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    SortParams,
)
from .schema import Base, Book, Category, Loan, Member, book_categories
from .session import (
    DatabaseManager,
    get_db_manager,
    safe_commit,
    safe_query,
    session_scope,
    set_db_manager,
)

__all__ = [
    "Base",
    "BaseRepository",
    "Book",
    "BookRepository",
    "BookSearchParams",
    "Category",
    "CirculationRepository",
    "ConflictError",
    "DatabaseManager",
    "DuplicateError",
    "InfrastructureError",
    "Loan",
    "LoanRepository",
    "LoanSearchParams",
    "Member",
    "MemberRepository",
    "MemberSearchParams",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "RepositoryException",
    "SortParams",
    "ValidationError",
    "book_categories",
    "get_db_manager",
    "loan_status_expression",
    "safe_commit",
    "safe_query",
    "session_scope",
    "set_db_manager",
]
