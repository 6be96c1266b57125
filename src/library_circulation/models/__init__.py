"""
Library Circulation Service Models.

Pydantic v2 models for the API and agent surfaces:
- Book: catalog items with the availability flag
- Member: people who borrow books
- Loan: ledger rows with their derived status
- Category: flat book classification
"""

from .book import Book, BookAvailability, BookCreate, BookUpdate
from .category import Category
from .loan import (
    BorrowRequest,
    Loan,
    LoanDetail,
    LoanStatus,
    ReturnRequest,
    derive_loan_status,
    utc_now,
)
from .member import Member, MemberCreate, MemberUpdate, placeholder_email

__all__ = [
    "Book",
    "BookAvailability",
    "BookCreate",
    "BookUpdate",
    "BorrowRequest",
    "Category",
    "Loan",
    "LoanDetail",
    "LoanStatus",
    "Member",
    "MemberCreate",
    "MemberUpdate",
    "ReturnRequest",
    "derive_loan_status",
    "placeholder_email",
    "utc_now",
]
