"""
Book models for the Library Circulation Service.

``Book`` is the read model returned by the catalog endpoints. ``available``
mirrors the denormalised flag on the books table; it is only ever changed by
borrow / return (or the administrative escape hatch), never by a client.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .category import Category

_ISBN_SEPARATORS = re.compile(r"[\s-]")
_ISBN_10 = re.compile(r"^\d{9}[\dX]$")
_ISBN_13 = re.compile(r"^\d{13}$")


def normalize_isbn(value: str) -> str:
    """
    Strip hyphens and spaces from an ISBN and check its shape.

    Accepts ISBN-10 (last character may be ``X``) and ISBN-13.

    Raises:
        ValueError: If the normalized value is neither shape
    """
    normalized = _ISBN_SEPARATORS.sub("", value).upper()
    if not (_ISBN_10.match(normalized) or _ISBN_13.match(normalized)):
        raise ValueError("ISBN must be 10 or 13 digits")
    return normalized


class BookCreate(BaseModel):
    """Payload for adding a book to the catalog."""

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=500,
        examples=["The Great Gatsby"],
    )

    author: str = Field(
        ...,
        description="Author name as printed on the cover",
        min_length=1,
        max_length=255,
        examples=["F. Scott Fitzgerald"],
    )

    isbn: str | None = Field(
        None,
        description="ISBN-10 or ISBN-13, hyphens and spaces allowed",
        examples=["978-0-7432-7356-5", "0743273567"],
    )

    description: str | None = Field(None, max_length=2000)

    cover_image_path: str | None = Field(None, max_length=500)

    category_ids: list[int] = Field(
        default_factory=list,
        description="Categories the book is filed under",
    )

    @field_validator("title", "author")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return normalize_isbn(v)


class BookUpdate(BaseModel):
    """
    Partial edit of a catalog entry. Only the fields sent are changed.

    ``available`` is not editable here: borrow / return own the flag, and the
    administrative override has its own endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=500)
    author: str | None = Field(None, min_length=1, max_length=255)
    isbn: str | None = None
    description: str | None = Field(None, max_length=2000)
    cover_image_path: str | None = Field(None, max_length=500)
    category_ids: list[int] | None = Field(
        None, description="Replaces the book's categories when given"
    )

    @field_validator("title", "author")
    @classmethod
    def strip_text(cls, v: str | None) -> str:
        if v is None or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return normalize_isbn(v)


class Book(BaseModel):
    """A catalog entry as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    isbn: str | None = None
    available: bool
    description: str | None = None
    cover_image_path: str | None = None
    categories: list[Category] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BookAvailability(BaseModel):
    """Answer to "can this book be borrowed right now"."""

    book_id: int
    available: bool
