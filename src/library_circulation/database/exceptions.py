"""
Error taxonomy for the data access layer.

Every failure a caller can observe maps to one of these kinds, and each kind
maps to one HTTP status family in the API layer:

- NotFoundError        -> 404 (referenced book / member / loan absent)
- ConflictError        -> 409 (book already on loan, duplicate unique value)
- ValidationError      -> 400 (malformed input, rejected before any transaction)
- InfrastructureError  -> 503 (pool exhaustion, transient database failures)
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""

    kind = "internal"


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""

    kind = "not_found"


class ConflictError(RepositoryException):
    """Raised when an operation conflicts with the current state of the data."""

    kind = "conflict"


class DuplicateError(ConflictError):
    """Raised when attempting to create a duplicate entity."""


class ValidationError(RepositoryException):
    """Raised for malformed input such as out-of-range pagination parameters."""

    kind = "validation"


class InfrastructureError(RepositoryException):
    """Raised when the database cannot serve the request (timeouts, lost connections)."""

    kind = "unavailable"
