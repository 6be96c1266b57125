"""
Member repository implementation for the Library Circulation Service.

Provides member lookup, search, registration, editing and removal. Loan
history for a member is served by ``LoanRepository.member_history``.
"""

import logging

from pydantic import BaseModel
from sqlalchemy import or_, select

from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..models.member import Member as MemberModel
from ..models.member import MemberCreate, MemberUpdate, placeholder_email
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


class MemberSearchParams(BaseModel):
    """Filters for the member listing."""

    search: str | None = None  # name, email or phone contains


class MemberRepository(BaseRepository[MemberDB, MemberModel]):
    """Repository for member data access."""

    sort_columns = {
        "name": MemberDB.name,
        "email": MemberDB.email,
        "created_at": MemberDB.created_at,
        "id": MemberDB.id,
    }
    default_sort = "name"

    @property
    def model_class(self):
        return MemberDB

    @property
    def response_schema(self):
        return MemberModel

    @property
    def entity_name(self) -> str:
        return "Member"

    def search(
        self,
        search_params: MemberSearchParams | None = None,
        pagination: PaginationParams | None = None,
        sort: SortParams | None = None,
    ) -> PaginatedResponse[MemberModel]:
        """
        Search members by name, email or phone (case-insensitive contains).

        Sorting is limited to name, email, created_at and id; default is name.
        """
        query = select(MemberDB)

        if search_params and search_params.search:
            search_term = contains_pattern(search_params.search)
            query = query.where(
                or_(
                    MemberDB.name.ilike(search_term, escape=LIKE_ESCAPE),
                    MemberDB.email.ilike(search_term, escape=LIKE_ESCAPE),
                    MemberDB.phone.ilike(search_term, escape=LIKE_ESCAPE),
                )
            )

        return self._paginate(query, pagination, sort)

    def get_by_email(self, email: str) -> MemberModel | None:
        query = select(MemberDB).where(MemberDB.email == email.strip().lower())
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get member by email",
        )
        return self._to_response_model(result) if result is not None else None

    def create(self, data: MemberCreate) -> MemberModel:
        """
        Register a member.

        Raises:
            DuplicateError: If the email is already registered
        """
        member = MemberDB(name=data.name, email=data.email, phone=data.phone)
        self._insert(member, "A member with this email already exists")
        logger.info("Registered member %s", member.id)
        return self._to_response_model(member)

    def update(self, member_id: int, data: MemberUpdate) -> MemberModel:
        """
        Edit a member. Only fields present in ``data`` change.

        Raises:
            NotFoundError: If the member does not exist
            DuplicateError: If the new email belongs to another member
        """
        member = self._get_row(member_id)
        if member is None:
            raise NotFoundError("Member not found")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(member, field, value)

        self._flush_changes("A member with this email already exists")
        logger.info("Updated member %s", member.id)
        return self._to_response_model(member)

    def delete(self, member_id: int) -> None:
        """
        Remove a member who has never borrowed anything.

        Raises:
            NotFoundError: If the member does not exist
            ConflictError: If the member appears in the loan ledger
        """
        self._delete(member_id, LoanDB.member_id, "Member has loan history and cannot be deleted")
        logger.info("Deleted member %s", member_id)

    def register_self(self, username: str) -> MemberModel:
        """
        Create the member record for a user who registered themselves.

        The member is named after the username and given a placeholder email
        (``<username>@library.local``) until they supply a real one.

        Raises:
            DuplicateError: If a member already holds that placeholder email
        """
        try:
            email = placeholder_email(username)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return self.create(MemberCreate(name=username.strip(), email=email))
