"""
MCP server exposing the loan lifecycle to agents.

Tools (operations with side effects):
- borrow_book(book_id, member_id)
- return_book(book_id)

Resources (read-only):
- library://loans/overdue

Tool handlers return the MCP content shape: ``content`` holds the human
readable text, ``data`` the structured result, and ``isError`` is set when the
operation was rejected. Expected failures (unknown book, book already on loan)
are reported as tool errors rather than protocol errors so the model can react
to them.
"""

import logging
import sys
from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from .config import get_config
from .database.circulation_repository import CirculationRepository
from .database.exceptions import InfrastructureError, RepositoryException
from .database.loan_repository import LoanRepository
from .database.session import get_db_manager, session_scope
from .models.loan import BorrowRequest, ReturnRequest
from .observability import configure_logfire, configure_logging

logger = logging.getLogger(__name__)

config = get_config()

mcp = FastMCP(
    name=config.service_name,
    version=config.service_version,
    instructions=(
        "Library circulation desk. Use borrow_book to lend a book to a member and "
        "return_book to check it back in. Read library://loans/overdue for loans "
        "past their due date."
    ),
)


def _tool_error(message: str) -> dict[str, Any]:
    return {"isError": True, "content": [{"type": "text", "text": message}]}


def _failure_message(error: RepositoryException) -> str:
    if isinstance(error, InfrastructureError):
        return "The library database is temporarily unavailable, try again shortly"
    return str(error)


async def borrow_book_handler(book_id: int, member_id: int) -> dict[str, Any]:
    """
    Lend a book to a member.

    The book must exist and be available, and the member must exist. The loan
    is due after the configured loan period (14 days by default).
    """
    try:
        params = BorrowRequest.model_validate({"book_id": book_id, "member_id": member_id})
    except PydanticValidationError as e:
        logger.warning("Invalid borrow parameters: %s", e)
        return _tool_error("book_id and member_id must be positive integers")

    try:
        with session_scope() as session:
            loan = CirculationRepository(session).borrow_book(params.book_id, params.member_id)
    except RepositoryException as e:
        logger.info("Borrow of book %s rejected: %s", params.book_id, e)
        return _tool_error(_failure_message(e))

    return {
        "content": [
            {
                "type": "text",
                "text": (
                    f"Book {loan.book_id} lent to member {loan.member_id}. "
                    f"Due {loan.due_date:%B %d, %Y}."
                ),
            }
        ],
        "data": {"loan": loan.model_dump(mode="json")},
    }


async def return_book_handler(book_id: int) -> dict[str, Any]:
    """Check a book back in, closing its open loan."""
    try:
        params = ReturnRequest.model_validate({"book_id": book_id})
    except PydanticValidationError as e:
        logger.warning("Invalid return parameters: %s", e)
        return _tool_error("book_id must be a positive integer")

    try:
        with session_scope() as session:
            loan = CirculationRepository(session).return_book(params.book_id)
    except RepositoryException as e:
        logger.info("Return of book %s rejected: %s", params.book_id, e)
        return _tool_error(_failure_message(e))

    return {
        "content": [{"type": "text", "text": "Book returned successfully"}],
        "data": {"loan": loan.model_dump(mode="json")},
    }


async def get_overdue_loans_handler() -> dict[str, Any]:
    """Open loans past their due date, oldest due date first."""
    with session_scope() as session:
        loans = LoanRepository(session).find_overdue()
    return {
        "overdue_loans": [loan.model_dump(mode="json") for loan in loans],
        "total": len(loans),
    }


mcp.tool(name="borrow_book")(borrow_book_handler)
mcp.tool(name="return_book")(return_book_handler)
mcp.resource(
    uri="library://loans/overdue",
    name="overdue_loans",
    description="Open loans past their due date, with book and member details",
    mime_type="application/json",
)(get_overdue_loans_handler)


def main() -> None:
    """Run the MCP server on stdio."""
    configure_logging(config)
    configure_logfire(config)
    # stdout belongs to the protocol
    logging.getLogger("fastmcp").setLevel(logging.WARNING)

    db_manager = get_db_manager()
    db_manager.init_database()

    logger.info("Starting %s v%s on stdio transport", config.service_name, config.service_version)
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)
    finally:
        db_manager.close()


if __name__ == "__main__":
    main()
