"""
Member models for the Library Circulation Service.

Members are the people who borrow books. A member created through
self-registration has no email of their own yet, so one is synthesised from
the username (see ``placeholder_email``).
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

PLACEHOLDER_EMAIL_DOMAIN = "library.local"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: str) -> str:
    """Lower-case and check an email; stored lower-cased so uniqueness ignores case."""
    value = value.strip().lower()
    if not _EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


def placeholder_email(username: str) -> str:
    """
    Build the placeholder email for a self-registered member.

    >>> placeholder_email("  Jane Doe ")
    'janedoe@library.local'
    """
    local_part = "".join(username.split()).lower()
    if not local_part:
        raise ValueError("username must not be blank")
    return f"{local_part}@{PLACEHOLDER_EMAIL_DOMAIN}"


class MemberCreate(BaseModel):
    """Payload for registering a member."""

    name: str = Field(..., min_length=1, max_length=255, examples=["Jane Doe"])

    email: str = Field(..., max_length=255, examples=["jane.doe@example.com"])

    phone: str | None = Field(None, max_length=50, examples=["+1-555-0100"])

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("phone")
    @classmethod
    def blank_phone_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class MemberUpdate(BaseModel):
    """Partial edit of a member. Only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str:
        if v is None or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str:
        return normalize_email(v or "")

    @field_validator("phone")
    @classmethod
    def blank_phone_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class Member(BaseModel):
    """A member as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
