"""FastAPI dependencies for authentication, authorization, and context."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User, UserRole
from .database import get_session
from .permissions import is_admin
from .security import TokenPayload, decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_or_create_user(
    session: AsyncSession,
    payload: TokenPayload,
) -> User:
    """Get or create the user row mirrored from the token claim."""
    user_id = UUID(payload.sub)
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    # users.email is unique; a claim must not take over another user's address
    result = await session.execute(
        select(User.id).where(User.email == payload.email, User.id != user_id)
    )
    if result.first() is not None:
        logger.warning(f"Token for {user_id} carries an email bound to another user")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email in token is already used by another user",
        )

    if user:
        # The claim is authoritative; keep the mirror in sync
        if user.email != payload.email:
            user.email = payload.email
        if user.name != payload.name:
            user.name = payload.name
        if user.role != payload.role:
            logger.info(f"Role for user {user.id} changed: {user.role.value} -> {payload.role.value}")
            user.role = payload.role
        return user

    logger.info(f"Creating user from token claim: id={user_id}, email={payload.email}, role={payload.role.value}")
    user = User(id=user_id, email=payload.email, name=payload.name, role=payload.role)
    session.add(user)
    await session.flush()
    return user


class CurrentUser:
    """Request-scoped context: the authenticated user plus network metadata."""

    def __init__(
        self,
        user: User,
        ip_address: str | None = None,
        user_agent: str | None = None,
        method: str | None = None,
        path: str | None = None,
    ):
        self.user = user
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.method = method
        self.path = path

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


async def get_current_user(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = await get_or_create_user(session, payload)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid subject in token",
        )

    return CurrentUser(
        user=user,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        method=request.method,
        path=request.url.path,
    )


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require the admin role."""
    if not is_admin(current_user):
        logger.warning(f"Admin route denied for user {current_user.id} ({current_user.role.value})")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
AdminDep = Annotated[CurrentUser, Depends(require_admin)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
