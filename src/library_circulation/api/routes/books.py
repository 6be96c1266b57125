"""Book catalog routes."""

import logging

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel

from ...database.book_repository import BookRepository, BookSearchParams
from ...database.circulation_repository import CirculationRepository
from ...database.repository import PaginatedResponse, PaginationParams, SortParams
from ...database.session import session_scope
from ...models.book import Book, BookAvailability, BookCreate, BookUpdate
from ..auth import AdminUser, CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


class AvailabilityOverride(BaseModel):
    available: bool


@router.get("")
def list_books(
    page: int = 1,
    limit: int | None = None,
    search: str | None = None,
    available: bool | None = None,
    category_ids: list[int] | None = Query(None),
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> PaginatedResponse[Book]:
    """List books. Repeat ``category_ids`` to require several categories at once."""
    with session_scope() as session:
        return BookRepository(session).search(
            BookSearchParams(search=search, available=available, category_ids=category_ids),
            PaginationParams(page=page, limit=limit),
            SortParams(sort_by=sort_by, sort_order=sort_order),
        )


@router.get("/{book_id}")
def get_book(book_id: int) -> Book:
    with session_scope() as session:
        return BookRepository(session).get(book_id)


@router.get("/{book_id}/availability")
def get_book_availability(book_id: int) -> BookAvailability:
    with session_scope() as session:
        available = CirculationRepository(session).is_book_available(book_id)
    return BookAvailability(book_id=book_id, available=available)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_book(data: BookCreate, user: CurrentUser) -> Book:
    logger.info("User %s adding book %r", user.username, data.title)
    with session_scope() as session:
        return BookRepository(session).create(data)


@router.put("/{book_id}")
def update_book(book_id: int, data: BookUpdate, user: CurrentUser) -> Book:
    logger.info("User %s editing book %s", user.username, book_id)
    with session_scope() as session:
        return BookRepository(session).update(book_id, data)


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_book(book_id: int, user: CurrentUser) -> Response:
    """Remove a book. Books that were ever lent stay, the loan ledger keeps them."""
    logger.info("User %s deleting book %s", user.username, book_id)
    with session_scope() as session:
        BookRepository(session).delete(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{book_id}/availability")
def override_book_availability(
    book_id: int, override: AvailabilityOverride, user: AdminUser
) -> Book:
    """Administrative correction of the availability flag. Does not touch loans."""
    logger.warning(
        "Admin %s overriding availability of book %s to %s",
        user.username,
        book_id,
        override.available,
    )
    with session_scope() as session:
        return BookRepository(session).set_availability(book_id, override.available)
