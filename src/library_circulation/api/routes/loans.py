"""Loan routes: borrow, return, listing and the overdue report."""

import logging

from fastapi import APIRouter, status

from ...database.circulation_repository import CirculationRepository
from ...database.loan_repository import LoanRepository, LoanSearchParams
from ...database.repository import PaginatedResponse, PaginationParams, SortParams
from ...database.session import session_scope
from ...models.loan import BorrowRequest, Loan, LoanDetail, LoanStatus, ReturnRequest
from ..auth import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("/borrow", status_code=status.HTTP_201_CREATED)
def borrow_book(request: BorrowRequest, user: CurrentUser) -> Loan:
    """Lend a book to a member. 409 if the book is already on loan."""
    logger.info(
        "User %s borrowing book %s for member %s", user.username, request.book_id, request.member_id
    )
    with session_scope() as session:
        return CirculationRepository(session).borrow_book(request.book_id, request.member_id)


@router.post("/return")
def return_book(request: ReturnRequest, user: CurrentUser) -> dict[str, str]:
    """Close the open loan on a book. 404 if there is none."""
    logger.info("User %s returning book %s", user.username, request.book_id)
    with session_scope() as session:
        CirculationRepository(session).return_book(request.book_id)
    return {"message": "Book returned successfully"}


@router.get("")
def list_loans(
    page: int = 1,
    limit: int | None = None,
    status: LoanStatus | None = None,
    search: str | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> PaginatedResponse[LoanDetail]:
    with session_scope() as session:
        return LoanRepository(session).search(
            LoanSearchParams(status=status, search=search),
            PaginationParams(page=page, limit=limit),
            SortParams(sort_by=sort_by, sort_order=sort_order),
        )


@router.get("/overdue")
def list_overdue_loans() -> list[LoanDetail]:
    """Open loans past their due date, oldest due date first."""
    with session_scope() as session:
        return LoanRepository(session).find_overdue()
