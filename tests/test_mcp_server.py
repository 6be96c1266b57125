"""
Tests for the MCP tools and resources.

These tests call the handlers directly and verify:
1. Input validation happens before any transaction
2. Successful calls return content plus structured data
3. Rejected operations come back as tool errors, not exceptions
4. The overdue resource reads the same ledger as the HTTP report
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from library_circulation.database import Book, CirculationRepository, Loan
from library_circulation.mcp_server import (
    borrow_book_handler,
    get_overdue_loans_handler,
    mcp,
    return_book_handler,
)
from library_circulation.models import utc_now


class TestBorrowBookTool:
    """Test the borrow_book MCP tool."""

    async def test_borrow_success(self, db_manager, seeded):
        result = await borrow_book_handler(book_id=7, member_id=3)

        assert "isError" not in result
        assert "Book 7 lent to member 3" in result["content"][0]["text"]
        loan = result["data"]["loan"]
        assert loan["book_id"] == 7
        assert loan["status"] == "active"
        with db_manager.session_scope() as s:
            assert s.get(Book, 7).available is False

    async def test_borrow_unavailable_book(self, db_manager, seeded):
        await borrow_book_handler(book_id=7, member_id=3)

        result = await borrow_book_handler(book_id=7, member_id=9)

        assert result["isError"] is True
        assert result["content"][0]["text"] == "Book is not available"

    async def test_borrow_unknown_member(self, db_manager, seeded):
        result = await borrow_book_handler(book_id=1, member_id=404)
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Member not found"

    @pytest.mark.parametrize(("book_id", "member_id"), [(0, 1), (1, -2), ("7", 3)])
    async def test_borrow_invalid_ids(self, db_manager, seeded, book_id, member_id):
        result = await borrow_book_handler(book_id=book_id, member_id=member_id)
        assert result["isError"] is True
        assert "positive integers" in result["content"][0]["text"]
        with db_manager.session_scope() as s:
            assert s.query(Loan).count() == 0

    async def test_database_unavailable(self, db_manager, seeded, monkeypatch):
        def locked(self, book_id, member_id, now=None):
            raise OperationalError("UPDATE books", {}, Exception("database is locked"))

        monkeypatch.setattr(CirculationRepository, "borrow_book", locked)

        result = await borrow_book_handler(book_id=1, member_id=1)

        assert result["isError"] is True
        assert "temporarily unavailable" in result["content"][0]["text"]


class TestReturnBookTool:
    """Test the return_book MCP tool."""

    async def test_return_success(self, db_manager, seeded):
        await borrow_book_handler(book_id=4, member_id=2)

        result = await return_book_handler(book_id=4)

        assert "isError" not in result
        assert result["content"][0]["text"] == "Book returned successfully"
        assert result["data"]["loan"]["status"] == "returned"
        assert result["data"]["loan"]["return_date"] is not None

    async def test_double_return(self, db_manager, seeded):
        await borrow_book_handler(book_id=4, member_id=2)
        await return_book_handler(book_id=4)

        result = await return_book_handler(book_id=4)

        assert result["isError"] is True
        assert result["content"][0]["text"] == "No active loan found for this book"

    async def test_return_invalid_id(self, db_manager):
        result = await return_book_handler(book_id=0)
        assert result["isError"] is True


class TestOverdueResource:
    """Test the overdue loans resource."""

    async def test_overdue_resource(self, db_manager, seeded):
        with db_manager.session_scope() as s:
            CirculationRepository(s).borrow_book(2, 5, now=utc_now() - timedelta(days=20))
            CirculationRepository(s).borrow_book(3, 6, now=utc_now() - timedelta(days=1))

        result = await get_overdue_loans_handler()

        assert result["total"] == 1
        overdue = result["overdue_loans"][0]
        assert overdue["book_id"] == 2
        assert overdue["book_title"] == "Book 02"
        assert overdue["member_email"] == "member5@example.com"
        assert overdue["status"] == "overdue"

    async def test_empty_ledger(self, db_manager, seeded):
        assert await get_overdue_loans_handler() == {"overdue_loans": [], "total": 0}


class TestServerRegistration:
    """Test what the server advertises."""

    async def test_tools_registered(self):
        tools = await mcp.get_tools()
        assert {"borrow_book", "return_book"} <= set(tools)

    async def test_overdue_resource_registered(self):
        resources = await mcp.get_resources()
        assert "library://loans/overdue" in resources
