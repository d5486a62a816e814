"""Authentication endpoints: login, self-registration and current user."""

import logging

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import selectinload
from sqlmodel import select

from app.api.deps import Auth, Session
from app.api.routing import PipelineRoute
from app.core.config import get_settings
from app.core.exceptions import ConflictError, ForbiddenError, UnauthorizedError
from app.core.security import create_jwt, hash_password, verify_password
from app.models.role import Role
from app.models.user import User, UserDetail
from app.services.audit import audit_recorder, snapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"], route_class=PipelineRoute)


# ── Schemas ──────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserDetail


# ── Helpers ──────────────────────────────────────────────────

def _issue_token(user: User) -> TokenResponse:
    token = create_jwt(
        subject=str(user.id),
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        role=user.role.name if user.role else "",
        email=user.email,
    )
    return TokenResponse(access_token=token, user=UserDetail.model_validate(user))


def _count_attempt(request: Request, outcome: str) -> None:
    metrics = getattr(request.app.state, "metrics", None)
    if metrics is not None:
        metrics.increment_auth_attempts(outcome)


async def _default_role(session: Session) -> Role:
    name = get_settings().default_role_name
    result = await session.execute(
        select(Role).where(Role.name == name).options(selectinload(Role.permissions))
    )
    role = result.scalar_one_or_none()
    if role is None:
        role = Role(name=name, description="Default role for self-registered users")
        role.permissions = []
        session.add(role)
        await session.flush()
    return role


# ── Routes ───────────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, session: Session) -> TokenResponse:
    """Authenticate with email + password, receive a JWT."""
    stmt = (
        select(User)
        .where(User.email == body.email)
        .options(selectinload(User.role).selectinload(Role.permissions))
    )
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None or not verify_password(body.password, user.password_hash):
        _count_attempt(request, "failure")
        logger.info("Failed login for %s", body.email)
        raise UnauthorizedError("Invalid email or password")

    if not user.is_active:
        _count_attempt(request, "failure")
        raise ForbiddenError("Account is disabled")

    _count_attempt(request, "success")
    return _issue_token(user)


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, request: Request, session: Session) -> TokenResponse:
    """Create an account with the default role. Tenants and roles are assigned by admins."""
    existing = await session.execute(select(User.id).where(User.email == body.email))
    if existing.first() is not None:
        raise ConflictError("A user with this email already exists")

    role = await _default_role(session)
    user = User(
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
        role_id=role.id,
    )
    user.role = role
    session.add(user)
    await session.commit()
    response = _issue_token(user)

    await audit_recorder.record(
        session,
        action="REGISTER_USER",
        subject="User",
        user_id=user.id,
        subject_id=user.id,
        after=snapshot(user),
        request=request,
    )
    return response


@router.get("/me", response_model=UserDetail)
async def get_me(auth: Auth) -> UserDetail:
    """Return the current user with role and permissions."""
    return UserDetail.model_validate(auth.user)
