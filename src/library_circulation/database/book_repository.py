"""
Book repository implementation for the Library Circulation Service.

Read side of the catalog plus the writes a librarian can make directly:
adding, editing and removing a book, and the administrative availability
override. The borrow and return flag flips live in ``circulation_repository``
because they must happen in the same transaction as the loan row they mirror.
"""

import logging

from pydantic import BaseModel
from sqlalchemy import and_, distinct, func, or_, select, update
from sqlalchemy.orm import selectinload

from ..database.schema import Book as BookDB
from ..database.schema import Category as CategoryDB
from ..database.schema import Loan as LoanDB
from ..database.schema import book_categories
from ..models.book import Book as BookModel
from ..models.book import BookCreate, BookUpdate, normalize_isbn
from .repository import (
    LIKE_ESCAPE,
    BaseRepository,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    SortParams,
    ValidationError,
    contains_pattern,
)
from .session import safe_query

logger = logging.getLogger(__name__)


class BookSearchParams(BaseModel):
    """
    Filters for the book listing.

    ``category_ids`` has AND semantics: a book matches only if it carries
    every requested category.
    """

    search: str | None = None  # title, author or isbn contains
    available: bool | None = None
    category_ids: list[int] | None = None


class BookRepository(BaseRepository[BookDB, BookModel]):
    """Repository for book data access."""

    sort_columns = {
        "title": BookDB.title,
        "author": BookDB.author,
        "isbn": BookDB.isbn,
        "available": BookDB.available,
        "id": BookDB.id,
        "created_at": BookDB.created_at,
    }
    default_sort = "id"

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    @property
    def entity_name(self) -> str:
        return "Book"

    def search(
        self,
        search_params: BookSearchParams | None = None,
        pagination: PaginationParams | None = None,
        sort: SortParams | None = None,
    ) -> PaginatedResponse[BookModel]:
        """
        Catalog search by free text, category and availability.

        Args:
            search_params: Free text, availability and category filters
            pagination: Page and page size; defaults to the first page
            sort: Sort column (title, author, isbn, available, id, created_at) and order

        Returns:
            One page of books matching every given filter
        """
        search_params = search_params or BookSearchParams()
        filters = []

        if search_params.search:
            search_term = contains_pattern(search_params.search)
            filters.append(
                or_(
                    BookDB.title.ilike(search_term, escape=LIKE_ESCAPE),
                    BookDB.author.ilike(search_term, escape=LIKE_ESCAPE),
                    BookDB.isbn.ilike(search_term, escape=LIKE_ESCAPE),
                )
            )

        if search_params.available is not None:
            filters.append(BookDB.available.is_(search_params.available))

        if search_params.category_ids:
            wanted = set(search_params.category_ids)
            tagged_with_all = (
                select(book_categories.c.book_id)
                .where(book_categories.c.category_id.in_(wanted))
                .group_by(book_categories.c.book_id)
                .having(func.count(distinct(book_categories.c.category_id)) == len(wanted))
            )
            filters.append(BookDB.id.in_(tagged_with_all))

        query = select(BookDB).options(selectinload(BookDB.categories))
        if filters:
            query = query.where(and_(*filters))

        return self._paginate(query, pagination, sort)

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        """
        Get book by ISBN.

        Args:
            isbn: ISBN-10 or ISBN-13 (with or without hyphens)

        Returns:
            The book, or None when no copy carries that ISBN
        """
        try:
            normalized = normalize_isbn(isbn)
        except ValueError:
            return None

        query = select(BookDB).where(BookDB.isbn == normalized)
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )
        return self._to_response_model(result) if result is not None else None

    def _load_categories(self, category_ids: list[int]) -> list[CategoryDB]:
        """
        Resolve category ids to rows.

        Raises:
            ValidationError: If a category id does not exist
        """
        if not category_ids:
            return []
        wanted = set(category_ids)
        query = select(CategoryDB).where(CategoryDB.id.in_(wanted))
        categories = list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to load categories",
            )
        )
        missing = wanted - {c.id for c in categories}
        if missing:
            raise ValidationError(f"Unknown category ids: {sorted(missing)}")
        return categories

    def create(self, data: BookCreate) -> BookModel:
        """
        Add a book to the catalog. New books are always available.

        Raises:
            ValidationError: If a category id does not exist
            DuplicateError: If the ISBN is already in the catalog
        """
        book = BookDB(
            title=data.title,
            author=data.author,
            isbn=data.isbn,
            description=data.description,
            cover_image_path=data.cover_image_path,
            available=True,
            categories=self._load_categories(data.category_ids),
        )
        self._insert(book, "A book with this ISBN already exists")
        logger.info("Added book %s (%s)", book.id, book.title)
        return self._to_response_model(book)

    def update(self, book_id: int, data: BookUpdate) -> BookModel:
        """
        Edit the catalog fields of a book.

        Only fields present in ``data`` change; ``category_ids`` replaces the
        whole category set. The availability flag is never written here.

        Raises:
            NotFoundError: If the book does not exist
            ValidationError: If a category id does not exist
            DuplicateError: If the new ISBN belongs to another book
        """
        book = self._get_row(book_id)
        if book is None:
            raise NotFoundError("Book not found")

        changes = data.model_dump(exclude_unset=True)
        category_ids = changes.pop("category_ids", None)
        if category_ids is not None:
            book.categories = self._load_categories(category_ids)
        for field, value in changes.items():
            setattr(book, field, value)

        self._flush_changes("A book with this ISBN already exists")
        logger.info("Updated book %s (%s)", book.id, ", ".join(sorted(data.model_fields_set)))
        return self._to_response_model(book)

    def delete(self, book_id: int) -> None:
        """
        Remove a book from the catalog.

        Raises:
            NotFoundError: If the book does not exist
            ConflictError: If the book appears in the loan ledger
        """
        self._delete(book_id, LoanDB.book_id, "Book has loan history and cannot be deleted")
        logger.info("Deleted book %s", book_id)

    def set_availability(self, book_id: int, available: bool) -> BookModel:
        """
        Administrative override of the availability flag.

        This is the only write to ``books.available`` outside borrow / return.
        It does not touch the loan ledger, so it can leave the flag out of step
        with the open loans; borrow and return tolerate that drift.

        Raises:
            NotFoundError: If the book does not exist
        """
        stmt = (
            update(BookDB)
            .where(BookDB.id == book_id)
            .values(available=available)
            .execution_options(synchronize_session=False)
        )
        result = safe_query(
            self.session, lambda s: s.execute(stmt), "Failed to override availability"
        )
        if result.rowcount == 0:
            raise NotFoundError("Book not found")

        logger.warning("Availability of book %s overridden to %s", book_id, available)
        book = self._get_row(book_id)
        self.session.refresh(book)
        return self._to_response_model(book)
