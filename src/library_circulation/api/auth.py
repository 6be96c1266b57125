"""
Bearer token authentication.

Tokens are HS256 JWTs carrying ``sub`` (user id), ``username`` and ``role``.
Issuing tokens to end users (login, password handling) belongs to a separate
identity service; ``create_access_token`` exists for operators and tests.

- missing token            -> 401
- invalid or expired token -> 403
- valid token, wrong role  -> 403
"""

import enum
import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ValidationError

from ..config import ServerConfig, get_config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    ADMIN = "admin"
    LIBRARIAN = "librarian"
    MEMBER = "member"


class Principal(BaseModel):
    """The authenticated caller, as described by the token claims."""

    id: int
    username: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(
    user_id: int,
    username: str,
    role: Role | str,
    expires_delta: timedelta | None = None,
    config: ServerConfig | None = None,
) -> str:
    """Sign a token for the given principal."""
    config = config or get_config()
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=config.access_token_expire_minutes)
    )
    claims = {
        "sub": str(user_id),
        "username": username,
        "role": Role(role).value,
        "exp": expire,
    }
    return jwt.encode(claims, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_access_token(token: str, config: ServerConfig | None = None) -> Principal:
    """
    Verify a token and return its principal.

    Raises:
        HTTPException: 403 if the token is expired, badly signed or malformed
    """
    config = config or get_config()
    forbidden = HTTPException(
        status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token"
    )
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except ExpiredSignatureError as e:
        logger.info("Rejected expired token")
        raise forbidden from e
    except JWTError as e:
        logger.info("Rejected invalid token: %s", e)
        raise forbidden from e

    try:
        return Principal(
            id=int(payload["sub"]),
            username=payload["username"],
            role=payload.get("role", Role.MEMBER),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        logger.info("Rejected token with malformed claims")
        raise forbidden from e


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_access_token(credentials.credentials)


def require_admin(user: Annotated[Principal, Depends(get_current_user)]) -> Principal:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


CurrentUser = Annotated[Principal, Depends(get_current_user)]
AdminUser = Annotated[Principal, Depends(require_admin)]
