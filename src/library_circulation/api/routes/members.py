"""Member routes."""

import logging

from fastapi import APIRouter, Response, status

from ...database.loan_repository import LoanRepository
from ...database.member_repository import MemberRepository, MemberSearchParams
from ...database.repository import PaginatedResponse, PaginationParams, SortParams
from ...database.session import session_scope
from ...models.loan import LoanDetail
from ...models.member import Member, MemberCreate, MemberUpdate
from ..auth import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members", tags=["members"])


@router.get("")
def list_members(
    page: int = 1,
    limit: int | None = None,
    search: str | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> PaginatedResponse[Member]:
    with session_scope() as session:
        return MemberRepository(session).search(
            MemberSearchParams(search=search),
            PaginationParams(page=page, limit=limit),
            SortParams(sort_by=sort_by, sort_order=sort_order),
        )


@router.get("/{member_id}")
def get_member(member_id: int) -> Member:
    with session_scope() as session:
        return MemberRepository(session).get(member_id)


@router.get("/{member_id}/loans")
def get_member_loans(
    member_id: int, page: int = 1, limit: int | None = None
) -> PaginatedResponse[LoanDetail]:
    """Loan history of a member, most recent first."""
    with session_scope() as session:
        return LoanRepository(session).member_history(
            member_id, PaginationParams(page=page, limit=limit)
        )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_member(data: MemberCreate, user: CurrentUser) -> Member:
    logger.info("User %s registering member %r", user.username, data.name)
    with session_scope() as session:
        return MemberRepository(session).create(data)


@router.put("/{member_id}")
def update_member(member_id: int, data: MemberUpdate, user: CurrentUser) -> Member:
    logger.info("User %s editing member %s", user.username, member_id)
    with session_scope() as session:
        return MemberRepository(session).update(member_id, data)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_member(member_id: int, user: CurrentUser) -> Response:
    logger.info("User %s deleting member %s", user.username, member_id)
    with session_scope() as session:
        MemberRepository(session).delete(member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_self(user: CurrentUser) -> Member:
    """Create the caller's own member record with a placeholder email."""
    with session_scope() as session:
        return MemberRepository(session).register_self(user.username)
