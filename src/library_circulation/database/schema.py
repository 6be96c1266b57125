"""
SQLAlchemy database schema for the Library Circulation Service.

Tables:
- books: catalog items, each carrying the denormalised ``available`` flag
- members: people who borrow books
- loans: the loan ledger; a row with ``return_date IS NULL`` is an open loan
- categories / book_categories: many-to-many book classification

The ``available`` flag on a book is a cache of "this book has no open loan".
It is written only by the circulation repository, in the same transaction
that opens or closes the matching loan row.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    text,
    true,
)
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

# Base class for all SQLAlchemy models
Base = declarative_base()


book_categories = Table(
    "book_categories",
    Base.metadata,
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True
    ),
)


class Category(Base):
    """Categories table - flat list of book classifications."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    books = relationship("Book", secondary=book_categories, back_populates="categories")


class Book(Base):
    """
    Books table - the library's catalog.

    ``available`` is true iff no loan row for this book has a NULL return_date.
    Borrow flips it to false and return flips it back, always inside the
    transaction that writes the loan row.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(20), nullable=True, unique=True)
    available = Column(Boolean, nullable=False, default=True, server_default=true())
    description = Column(Text, nullable=True)
    cover_image_path = Column(String(500), nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    categories = relationship(
        "Category", secondary=book_categories, back_populates="books", order_by="Category.name"
    )
    loans = relationship("Loan", back_populates="book")

    __table_args__ = (
        Index("idx_books_title", "title"),
        Index("idx_books_author", "author"),
        Index("idx_books_available", "available"),
    )


class Member(Base):
    """Members table - people who can borrow books."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50), nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="member")

    __table_args__ = (Index("idx_members_name", "name"),)

    @validates("email")
    def validate_email(self, key, value):  # noqa: ARG002
        """Store emails lower-cased so the unique constraint is case-insensitive."""
        return value.strip().lower() if value else value


class Loan(Base):
    """
    Loans table - append-mostly ledger of borrow/return events.

    A loan is inserted by a borrow and updated exactly once, by the return
    that sets ``return_date``. Status (active / overdue / returned) is derived
    from the dates and never stored.
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    borrow_date = Column(DateTime, nullable=False, default=func.now())
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())

    book = relationship("Book", back_populates="loans")
    member = relationship("Member", back_populates="loans")

    __table_args__ = (
        Index("idx_loans_book_id", "book_id"),
        Index("idx_loans_member_id", "member_id"),
        Index("idx_loans_due_date", "due_date"),
        Index("idx_loans_borrow_date", "borrow_date"),
        # At most one open loan per book
        Index(
            "uq_loans_one_open_per_book",
            "book_id",
            unique=True,
            sqlite_where=text("return_date IS NULL"),
            postgresql_where=text("return_date IS NULL"),
        ),
        CheckConstraint("due_date >= borrow_date", name="check_due_after_borrow"),
        CheckConstraint(
            "return_date IS NULL OR return_date >= borrow_date", name="check_return_after_borrow"
        ),
    )
