"""
Circulation repository implementation for the Library Circulation Service.

This repository is the loan lifecycle engine. It owns the only writes that
keep three things in step:

1. **Availability flag**: ``books.available``
2. **Loan ledger**: the ``loans`` rows and their ``return_date``
3. **Concurrent requests**: two borrows of one book, or two returns

Each operation runs inside the caller's transaction (``session_scope``) and
starts with a guarded UPDATE of the book row. The UPDATE takes the row lock
(PostgreSQL) or the database write lock (SQLite) before anything is read, so
racing requests for the same book serialise there and the loser sees the
winner's committed state. No in-process lock is involved.

Any exception raised here leaves the transaction for the caller to roll back,
which undoes the flag flip together with the loan row.
"""

import logging
from datetime import datetime, timedelta

import logfire
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_config
from ..database.schema import Book as BookDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..models.loan import Loan as LoanModel
from ..models.loan import utc_now
from ..observability import record_loan_event
from .loan_repository import LoanRepository
from .repository import ConflictError, NotFoundError
from .session import safe_query

logger = logging.getLogger(__name__)


class CirculationRepository:
    """
    Borrow and return operations.

    Usage:
        ```python
        with session_scope() as session:
            loan = CirculationRepository(session).borrow_book(book_id=7, member_id=3)
        ```
    """

    def __init__(self, session: Session, loan_period_days: int | None = None):
        """Initialize repository with database session."""
        self.session = session
        if loan_period_days is None:
            loan_period_days = get_config().loan_period_days
        self.loan_period = timedelta(days=loan_period_days)
        self.loans = LoanRepository(session)

    def _book_exists(self, book_id: int) -> bool:
        return (
            safe_query(
                self.session,
                lambda s: s.execute(select(BookDB.id).where(BookDB.id == book_id)).scalar(),
                "Failed to get book",
            )
            is not None
        )

    def borrow_book(self, book_id: int, member_id: int, now: datetime | None = None) -> LoanModel:
        """
        Lend a book to a member.

        1. Claim the book: set available = false where it is still true
        2. Nothing claimed: the book is missing (NotFound) or on loan (Conflict)
        3. Check the member exists
        4. Check no open loan exists (the flag can drift via the admin override)
        5. Insert the loan, due ``loan_period_days`` after now

        Args:
            book_id: Book to lend
            member_id: Member borrowing it
            now: Borrow timestamp; defaults to the current UTC time

        Returns:
            The new loan, status active

        Raises:
            NotFoundError: If the book or member does not exist
            ConflictError: If the book is already on loan
        """
        now = now or utc_now()

        with logfire.span(
            "borrow book {book_id} for member {member_id}", book_id=book_id, member_id=member_id
        ):
            claim = (
                update(BookDB)
                .where(BookDB.id == book_id, BookDB.available.is_(True))
                .values(available=False)
                .execution_options(synchronize_session=False)
            )
            claimed = safe_query(self.session, lambda s: s.execute(claim), "Failed to claim book")

            if claimed.rowcount == 0:
                if not self._book_exists(book_id):
                    raise NotFoundError("Book not found")
                raise ConflictError("Book is not available")

            member = safe_query(
                self.session, lambda s: s.get(MemberDB, member_id), "Failed to get member"
            )
            if member is None:
                raise NotFoundError("Member not found")

            if self.loans.find_open_loans(book_id):
                logger.warning("Book %s was flagged available but has an open loan", book_id)
                raise ConflictError("Book is currently borrowed")

            loan = LoanDB(
                book_id=book_id,
                member_id=member_id,
                borrow_date=now,
                due_date=now + self.loan_period,
                return_date=None,
            )
            self.session.add(loan)
            try:
                self.session.flush()
            except IntegrityError as e:
                # The one-open-loan-per-book index caught a race the flag missed
                raise ConflictError("Book is currently borrowed") from e

            logger.info(
                "Book %s lent to member %s as loan %s, due %s",
                book_id,
                member_id,
                loan.id,
                loan.due_date.isoformat(),
            )
            record_loan_event("borrow")
            return LoanModel.from_row(loan, now)

    def return_book(self, book_id: int, now: datetime | None = None) -> LoanModel:
        """
        Close the open loan on a book and make it available again.

        If more than one loan is open (a broken invariant), the most recently
        borrowed one is closed and the anomaly is logged.

        Args:
            book_id: Book being returned
            now: Return timestamp; defaults to the current UTC time

        Returns:
            The closed loan, status returned

        Raises:
            NotFoundError: If the book has no open loan. A second return of the
                same book fails here and changes nothing.
        """
        now = now or utc_now()

        with logfire.span("return book {book_id}", book_id=book_id):
            release = (
                update(BookDB)
                .where(BookDB.id == book_id)
                .values(available=True)
                .execution_options(synchronize_session=False)
            )
            released = safe_query(
                self.session, lambda s: s.execute(release), "Failed to release book"
            )
            if released.rowcount == 0:
                raise NotFoundError("Book not found")

            open_loans = self.loans.find_open_loans(book_id)
            if not open_loans:
                raise NotFoundError("No active loan found for this book")

            if len(open_loans) > 1:
                logger.warning(
                    "Data integrity anomaly: book %s has %d open loans (%s); closing loan %s",
                    book_id,
                    len(open_loans),
                    ", ".join(str(loan.id) for loan in open_loans),
                    open_loans[0].id,
                )

            loan = open_loans[0]
            close = (
                update(LoanDB)
                .where(LoanDB.id == loan.id, LoanDB.return_date.is_(None))
                .values(return_date=max(now, loan.borrow_date))
                .execution_options(synchronize_session=False)
            )
            closed = safe_query(self.session, lambda s: s.execute(close), "Failed to close loan")
            if closed.rowcount == 0:
                raise NotFoundError("No active loan found for this book")

            self.session.refresh(loan)
            logger.info("Book %s returned, loan %s closed", book_id, loan.id)
            record_loan_event("return")
            return LoanModel.from_row(loan, now)

    def is_book_available(self, book_id: int) -> bool:
        """
        Whether a borrow of this book would currently succeed on availability.

        True only if the flag is set and no open loan exists.

        Raises:
            NotFoundError: If the book does not exist
        """
        available = safe_query(
            self.session,
            lambda s: s.execute(select(BookDB.available).where(BookDB.id == book_id)).one_or_none(),
            "Failed to check availability",
        )
        if available is None:
            raise NotFoundError("Book not found")
        return bool(available[0]) and not self.loans.find_open_loans(book_id)
