"""
CSV export of the loan ledger (admin only).

The file starts with a UTF-8 byte order mark so spreadsheet applications
pick the right encoding for non-Latin titles and names.
"""

import csv
import io
import logging
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import Response

from ...database.loan_repository import LoanRepository, LoanSearchParams
from ...database.session import session_scope
from ...models.loan import LoanDetail, LoanStatus
from ..auth import AdminUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/export", tags=["export"])

LOAN_EXPORT_COLUMNS = [
    "id",
    "book_title",
    "book_author",
    "book_isbn",
    "member_name",
    "member_email",
    "borrow_date",
    "due_date",
    "return_date",
    "status",
]

UTF8_BOM = "\ufeff"


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, LoanStatus):
        return value.value
    return str(value)


def loans_to_csv(loans: list[LoanDetail]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(LOAN_EXPORT_COLUMNS)
    for loan in loans:
        writer.writerow([_cell(getattr(loan, column)) for column in LOAN_EXPORT_COLUMNS])
    return UTF8_BOM + buffer.getvalue()


@router.get("/loans")
def export_loans(
    user: AdminUser,
    status: LoanStatus | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> Response:
    with session_scope() as session:
        loans = LoanRepository(session).export_rows(
            LoanSearchParams(status=status, start_date=start_date, end_date=end_date)
        )
    logger.info("Admin %s exported %d loan(s)", user.username, len(loans))
    return Response(
        content=loans_to_csv(loans),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=loans_export.csv"},
    )
