"""
Loan models for the Library Circulation Service.

A loan's status is never stored. It is derived from its dates:

- returned: return_date is set
- overdue:  still open and due_date < now
- active:   still open and due_date >= now

``derive_loan_status`` is the Python form of that rule. The SQL form lives in
``database.loan_repository.loan_status_expression`` and the two must agree for
every (return_date, due_date, now) triple.

All timestamps are naive UTC.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LoanStatus(str, Enum):
    """Derived status of a loan."""

    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


def utc_now() -> datetime:
    """Current time as a naive UTC timestamp, the form stored in the loans table."""
    return datetime.now(UTC).replace(tzinfo=None)


def derive_loan_status(
    return_date: datetime | None, due_date: datetime, now: datetime | None = None
) -> LoanStatus:
    if return_date is not None:
        return LoanStatus.RETURNED
    if due_date < (now or utc_now()):
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


class BorrowRequest(BaseModel):
    """Body of a borrow request. Both ids must be positive integers."""

    book_id: int = Field(..., gt=0, strict=True, examples=[7])
    member_id: int = Field(..., gt=0, strict=True, examples=[3])


class ReturnRequest(BaseModel):
    """Body of a return request."""

    book_id: int = Field(..., gt=0, strict=True, examples=[7])


class Loan(BaseModel):
    """A loan ledger row together with its derived status."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    member_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: LoanStatus

    @classmethod
    def from_row(cls, loan, now: datetime | None = None) -> "Loan":
        """Build from an ORM ``Loan``, deriving status against ``now``."""
        return cls(
            id=loan.id,
            book_id=loan.book_id,
            member_id=loan.member_id,
            borrow_date=loan.borrow_date,
            due_date=loan.due_date,
            return_date=loan.return_date,
            status=derive_loan_status(loan.return_date, loan.due_date, now),
        )


class LoanDetail(Loan):
    """
    A loan joined with the book and member it references.

    Used by the loan listing, the overdue report and the CSV export.
    """

    book_title: str
    book_author: str
    book_isbn: str | None = None
    member_name: str
    member_email: str
