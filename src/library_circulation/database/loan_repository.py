"""
Loan repository implementation for the Library Circulation Service.

Read side of the loan ledger: listings, the overdue report, member history
and the CSV export rows. Nothing here writes; loans are created and closed
only by ``CirculationRepository``.

Status is derived in SQL by ``loan_status_expression``. The same expression
object produces the ``status`` column and, when filtering, the WHERE clause,
so a row can never be filtered as one status and labelled as another. ``now``
is bound once per query as a parameter rather than read from the database
clock.
"""

import logging
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import ColumnElement, Select, and_, bindparam, case, literal, or_, select

from ..database.schema import Book as BookDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..models.loan import LoanDetail, LoanStatus, utc_now
from .repository import (
    LIKE_ESCAPE,
    BaseRepository,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    SortParams,
    contains_pattern,
)
from .session import safe_query

logger = logging.getLogger(__name__)


def loan_status_expression(now: datetime) -> ColumnElement[str]:
    """
    SQL form of the loan status rule.

    returned if return_date is set, overdue if open and due_date < now,
    otherwise active. Mirrors ``models.loan.derive_loan_status``.
    """
    now_param = bindparam("status_now", value=now, type_=LoanDB.due_date.type)
    return case(
        (LoanDB.return_date.is_not(None), literal(LoanStatus.RETURNED.value)),
        (LoanDB.due_date < now_param, literal(LoanStatus.OVERDUE.value)),
        else_=literal(LoanStatus.ACTIVE.value),
    )


class LoanSearchParams(BaseModel):
    """Filters for the loan listing and export."""

    status: LoanStatus | None = None
    search: str | None = None  # book title or member name contains
    member_id: int | None = None
    book_id: int | None = None
    start_date: datetime | None = None  # borrow_date >= start_date
    end_date: datetime | None = None  # borrow_date <= end_date


class LoanRepository(BaseRepository[LoanDB, LoanDetail]):
    """Repository for loan ledger reads."""

    sort_columns = {
        "borrow_date": LoanDB.borrow_date,
        "due_date": LoanDB.due_date,
        "return_date": LoanDB.return_date,
        "id": LoanDB.id,
    }
    default_sort = "borrow_date"
    default_sort_order = "desc"

    @property
    def model_class(self):
        return LoanDB

    @property
    def response_schema(self):
        return LoanDetail

    @property
    def entity_name(self) -> str:
        return "Loan"

    def _detail_query(
        self, search_params: LoanSearchParams | None, now: datetime
    ) -> Select:
        """Loans joined with book and member, filtered, with the status column."""
        search_params = search_params or LoanSearchParams()
        status = loan_status_expression(now)

        query = (
            select(
                LoanDB,
                BookDB.title.label("book_title"),
                BookDB.author.label("book_author"),
                BookDB.isbn.label("book_isbn"),
                MemberDB.name.label("member_name"),
                MemberDB.email.label("member_email"),
                status.label("status"),
            )
            .join(BookDB, LoanDB.book_id == BookDB.id)
            .join(MemberDB, LoanDB.member_id == MemberDB.id)
        )

        filters = []
        if search_params.status is not None:
            filters.append(status == search_params.status.value)
        if search_params.search:
            search_term = contains_pattern(search_params.search)
            filters.append(
                or_(
                    BookDB.title.ilike(search_term, escape=LIKE_ESCAPE),
                    MemberDB.name.ilike(search_term, escape=LIKE_ESCAPE),
                )
            )
        if search_params.member_id is not None:
            filters.append(LoanDB.member_id == search_params.member_id)
        if search_params.book_id is not None:
            filters.append(LoanDB.book_id == search_params.book_id)
        if search_params.start_date is not None:
            filters.append(LoanDB.borrow_date >= search_params.start_date)
        if search_params.end_date is not None:
            filters.append(LoanDB.borrow_date <= search_params.end_date)

        if filters:
            query = query.where(and_(*filters))
        return query

    @staticmethod
    def _row_to_detail(row) -> LoanDetail:
        loan = row[0]
        return LoanDetail(
            id=loan.id,
            book_id=loan.book_id,
            member_id=loan.member_id,
            borrow_date=loan.borrow_date,
            due_date=loan.due_date,
            return_date=loan.return_date,
            status=row.status,
            book_title=row.book_title,
            book_author=row.book_author,
            book_isbn=row.book_isbn,
            member_name=row.member_name,
            member_email=row.member_email,
        )

    def search(
        self,
        search_params: LoanSearchParams | None = None,
        pagination: PaginationParams | None = None,
        sort: SortParams | None = None,
        now: datetime | None = None,
    ) -> PaginatedResponse[LoanDetail]:
        """
        List loans with their derived status.

        Args:
            search_params: Status, free text, member / book and date filters
            pagination: Pagination parameters
            sort: borrow_date (default, desc), due_date, return_date or id
            now: Reference time for status; defaults to the current UTC time
        """
        query = self._detail_query(search_params, now or utc_now())
        return self._paginate(query, pagination, sort, to_model=self._row_to_detail, scalars=False)

    def member_history(
        self, member_id: int, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[LoanDetail]:
        """
        Loan history of one member, most recent first.

        Raises:
            NotFoundError: If the member does not exist
        """
        member_exists = safe_query(
            self.session,
            lambda s: s.get(MemberDB, member_id) is not None,
            "Failed to get member",
        )
        if not member_exists:
            raise NotFoundError("Member not found")
        return self.search(LoanSearchParams(member_id=member_id), pagination)

    def find_overdue(self, now: datetime | None = None) -> list[LoanDetail]:
        """
        All open loans past their due date, oldest due date first.

        Used by the overdue report and the overdue scanner.
        """
        query = self._detail_query(
            LoanSearchParams(status=LoanStatus.OVERDUE), now or utc_now()
        ).order_by(LoanDB.due_date.asc(), LoanDB.id.asc())
        rows = safe_query(
            self.session, lambda s: s.execute(query).all(), "Failed to list overdue loans"
        )
        return [self._row_to_detail(row) for row in rows]

    def export_rows(
        self, search_params: LoanSearchParams | None = None, now: datetime | None = None
    ) -> list[LoanDetail]:
        """Every loan matching the filters, newest borrow first, for the CSV export."""
        query = self._detail_query(search_params, now or utc_now()).order_by(
            LoanDB.borrow_date.desc(), LoanDB.id.desc()
        )
        rows = safe_query(
            self.session, lambda s: s.execute(query).all(), "Failed to export loans"
        )
        return [self._row_to_detail(row) for row in rows]

    def find_open_loans(self, book_id: int) -> list[LoanDB]:
        """
        Open loans for a book, most recent first.

        More than one means the one-open-loan-per-book rule was broken.
        """
        query = (
            select(LoanDB)
            .where(LoanDB.book_id == book_id, LoanDB.return_date.is_(None))
            .order_by(LoanDB.borrow_date.desc(), LoanDB.id.desc())
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to find open loans",
            )
        )
