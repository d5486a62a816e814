"""FastAPI dependencies for authentication and authorization."""

import uuid
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from app.core.ability import Ability, define_ability_for
from app.core.database import get_session
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import decode_jwt
from app.models.role import Role
from app.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("user", "ability")

    def __init__(self, user: User, ability: Ability) -> None:
        self.user = user
        self.ability = ability

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    @property
    def tenant_id(self) -> uuid.UUID | None:
        return self.user.tenant_id


async def load_user(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    """Fetch a user together with its role and the role's permissions."""
    stmt = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.role).selectinload(Role.permissions))
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> AuthContext:
    """Resolve a bearer JWT to the acting user and their ability."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    try:
        payload = decode_jwt(credentials.credentials)
        user_id = uuid.UUID(payload["sub"])
    except JWTError as exc:
        raise UnauthorizedError("Invalid or expired JWT") from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedError("Malformed JWT payload") from exc

    user = await load_user(session, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("Token owner account is disabled")

    return AuthContext(user=user, ability=define_ability_for(user))


def require_ability(action: str, subject: str) -> Callable[..., Awaitable[AuthContext]]:
    """Route dependency: the caller must be able to ``action`` some ``subject``."""

    async def dependency(
        auth: Annotated[AuthContext, Depends(get_auth_context)],
    ) -> AuthContext:
        if not auth.ability.can(action, subject):
            raise ForbiddenError(f"You are not allowed to {action} {subject}")
        return auth

    return dependency


def ensure_can(auth: AuthContext, action: str, subject: str, obj: Any) -> None:
    """Object-level check, evaluated against the rule conditions."""
    if not auth.ability.can(action, subject, obj):
        raise ForbiddenError(f"You are not allowed to {action} this {subject}")


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
