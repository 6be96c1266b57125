"""
Repository pattern implementation for the Library Circulation Service.

This module provides the data access layer shared by the HTTP routes, the
agent tools and the overdue scanner:

1. **Separation**: routes deal with HTTP, repositories deal with SQL
2. **Consistency**: every list endpoint paginates, sorts and counts the same way
3. **Serialization**: methods return Pydantic models that dump straight to JSON

Repositories never commit. The caller owns the transaction through
``session_scope()``, so a borrow or return is one atomic unit no matter how
many statements it issues.

Pagination contract: ``page >= 1`` and ``1 <= limit <= max_page_size``.
``totalPages = ceil(total / limit)`` which is 0 for an empty result, and a page
past the end returns an empty ``data`` list.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import ColumnElement, Select, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_config
from .exceptions import (
    ConflictError,
    DuplicateError,
    InfrastructureError,
    NotFoundError,
    RepositoryException,
    ValidationError,
)
from .schema import Base
from .session import safe_query

# ORM row and API shape handled by a concrete repository
ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

__all__ = [
    "BaseRepository",
    "ConflictError",
    "DuplicateError",
    "InfrastructureError",
    "LIKE_ESCAPE",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "RepositoryException",
    "SortParams",
    "ValidationError",
    "contains_pattern",
]

#: Escape character used by every ``contains_pattern`` match
LIKE_ESCAPE = "\\"


def contains_pattern(text: str) -> str:
    """
    Build a ``LIKE``/``ILIKE`` "contains" pattern for user-supplied text.

    ``%``, ``_`` and the escape character itself are matched literally, so a
    search for ``50%`` finds "50% off" and not every row. Use with
    ``column.ilike(pattern, escape=LIKE_ESCAPE)``.
    """
    escaped = (
        text.strip()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    limit: int | None = None

    @property
    def page_size(self) -> int:
        return self.limit if self.limit is not None else get_config().default_page_size

    @property
    def offset(self) -> int:
        """Rows to skip before the requested page."""
        return (self.page - 1) * self.page_size

    def validate_params(self, max_page_size: int | None = None) -> None:
        """
        Validate pagination parameters.

        Raises:
            ValidationError: If page < 1 or limit is outside 1..max_page_size
        """
        max_page_size = max_page_size or get_config().max_page_size
        if self.page < 1:
            raise ValidationError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > max_page_size:
            raise ValidationError(f"Limit must be between 1 and {max_page_size}")


class SortParams(BaseModel):
    """Requested ordering; unknown columns fall back to the entity default."""

    sort_by: str | None = None
    sort_order: str | None = None


class PaginationMeta(BaseModel):
    """The ``pagination`` block of a list response."""

    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """
    Standard paginated response for list operations.

    Serializes (with ``by_alias=True``) to
    ``{"data": [...], "pagination": {"page", "limit", "total", "totalPages"}}``.
    """

    data: list[ResponseSchemaType]
    pagination: PaginationMeta

    @classmethod
    def build(
        cls, data: list[ResponseSchemaType], pagination: PaginationParams, total: int
    ) -> "PaginatedResponse[ResponseSchemaType]":
        limit = pagination.page_size
        return cls(
            data=data,
            pagination=PaginationMeta(
                page=pagination.page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository providing lookups, inserts and list queries.

    Subclasses declare the ORM class, the response schema, and the sort
    allow-list used by ``_paginate``.
    """

    #: Public sort names mapped to columns. Anything else falls back to the default.
    sort_columns: Mapping[str, Any] = {}
    default_sort: str = "id"
    default_sort_order: str = "asc"

    def __init__(self, session: Session):
        """Bind to a session owned by the caller's transaction scope."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Mapped table this repository reads and writes."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Pydantic shape handed back to callers."""

    @property
    def entity_name(self) -> str:
        return self.model_class.__name__

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Build the API shape from an ORM row."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_row(self, entity_id: int) -> ModelType | None:
        return safe_query(
            self.session,
            lambda s: s.get(self.model_class, entity_id),
            f"Failed to get {self.entity_name} by ID",
        )

    def get_by_id(self, entity_id: int) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            The row as its API shape, or None when the id is unknown
        """
        db_obj = self._get_row(entity_id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def get(self, entity_id: int) -> ResponseSchemaType:
        """
        Get entity by ID or fail.

        Raises:
            NotFoundError: If no row has this ID
        """
        result = self.get_by_id(entity_id)
        if result is None:
            raise NotFoundError(f"{self.entity_name} not found")
        return result

    def _insert(self, db_obj: ModelType, duplicate_message: str) -> ModelType:
        """
        Insert a row inside the caller's transaction.

        A unique violation leaves the transaction unusable; the caller's
        ``session_scope`` rolls it back when the error propagates.

        Raises:
            DuplicateError: If a unique constraint rejects the row
        """
        self.session.add(db_obj)
        self._flush_changes(duplicate_message)
        return db_obj

    def _flush_changes(self, duplicate_message: str) -> None:
        """
        Flush pending inserts or attribute changes.

        Raises:
            DuplicateError: If a unique constraint rejects the new values
        """
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateError(duplicate_message) from e

    def _delete(self, entity_id: int, referenced_by: Any, in_use_message: str) -> None:
        """
        Delete a row that nothing in the loan ledger points at.

        Loans keep their book and member for good, so a referenced row is
        refused with a conflict. The foreign key is the backstop for a loan
        inserted between the check and the delete.

        Args:
            entity_id: Primary key of the row to delete
            referenced_by: The ``loans`` column holding this entity's id
            in_use_message: Conflict message when loans reference the row

        Raises:
            NotFoundError: If no row has this ID
            ConflictError: If loans still reference the row
        """
        if self._get_row(entity_id) is None:
            raise NotFoundError(f"{self.entity_name} not found")

        referenced = safe_query(
            self.session,
            lambda s: s.execute(
                select(referenced_by).where(referenced_by == entity_id).limit(1)
            ).first(),
            f"Failed to check loans of {self.entity_name}",
        )
        if referenced is not None:
            raise ConflictError(in_use_message)

        stmt = delete(self.model_class).where(self.model_class.id == entity_id)
        try:
            safe_query(
                self.session, lambda s: s.execute(stmt), f"Failed to delete {self.entity_name}"
            )
        except IntegrityError as e:
            raise ConflictError(in_use_message) from e

    def _order_by(self, sort: SortParams | None) -> list[ColumnElement]:
        """
        Resolve the requested sort against the allow-list.

        Ties are always broken by primary key so pages never overlap.
        """
        sort = sort or SortParams()
        key = (sort.sort_by or "").lower()
        column = self.sort_columns.get(key, self.sort_columns[self.default_sort])
        order = (sort.sort_order or self.default_sort_order).lower()
        descending = order == "desc"

        clauses = [column.desc() if descending else column.asc()]
        pk = self.model_class.id
        if column is not pk:
            clauses.append(pk.desc() if descending else pk.asc())
        return clauses

    def _paginate(
        self,
        query: Select,
        pagination: PaginationParams | None,
        sort: SortParams | None,
        to_model: Callable[[Any], ResponseSchemaType] | None = None,
        scalars: bool = True,
    ) -> PaginatedResponse[ResponseSchemaType]:
        """
        Count and page a filtered statement.

        The total is ``SELECT count(*)`` over the same statement wrapped as a
        subquery, run in the same session as the page query.

        Args:
            query: Filtered, unordered statement
            pagination: Page and limit; validated here
            sort: Requested ordering
            to_model: Row converter, defaults to the response schema
            scalars: Whether rows are single ORM entities or tuples
        """
        pagination = pagination or PaginationParams()
        pagination.validate_params()
        to_model = to_model or self._to_response_model

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                f"Failed to count {self.entity_name} rows",
            )
            or 0
        )

        # Past the end: no page query, the offset may not even fit a 64-bit integer
        if pagination.offset >= total:
            return PaginatedResponse.build([], pagination, total)

        page_query = (
            query.order_by(*self._order_by(sort))
            .offset(pagination.offset)
            .limit(pagination.page_size)
        )

        def run(s: Session):
            result = s.execute(page_query)
            if scalars:
                return result.unique().scalars().all()
            return result.all()

        rows = safe_query(self.session, run, f"Failed to list {self.entity_name} rows")
        return PaginatedResponse.build([to_model(row) for row in rows], pagination, total)
