"""Users CRUD, plus aggregate stats, a bulk export and an activation toggle."""

import csv
import io
import uuid
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlmodel import select

from app.api.deps import AuthContext, Session, ensure_can, load_user, require_ability
from app.api.routing import PipelineRoute
from app.core.ability import Action, Subject
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from app.core.pagination import Page, PageParams, page_params, paginate
from app.core.security import hash_password
from app.models.base import utcnow
from app.models.role import Role
from app.models.tenant import Tenant
from app.models.user import User, UserCreate, UserDetail, UserRead, UserStats, UserUpdate
from app.services.audit import audit_recorder, snapshot

router = APIRouter(prefix="/users", tags=["users"], route_class=PipelineRoute)

SEARCH_FIELDS = ("name", "email")

CanCreate = Annotated[AuthContext, Depends(require_ability(Action.CREATE, Subject.USER))]
CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.USER))]
CanUpdate = Annotated[AuthContext, Depends(require_ability(Action.UPDATE, Subject.USER))]
CanDelete = Annotated[AuthContext, Depends(require_ability(Action.DELETE, Subject.USER))]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    request: Request,
    auth: CanCreate,
    session: Session,
) -> UserRead:
    await _ensure_email_free(session, body.email)
    await _ensure_role_exists(session, body.role_id)
    if body.tenant_id is not None and await session.get(Tenant, body.tenant_id) is None:
        raise NotFoundError("Tenant not found")

    user = User(
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
        role_id=body.role_id,
        tenant_id=body.tenant_id,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    created = UserRead.model_validate(user)

    await audit_recorder.record(
        session,
        action="CREATE_USER",
        subject=Subject.USER,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=user.id,
        after=snapshot(user),
        request=request,
    )
    return created


@router.get("", response_model=Page[UserRead])
async def list_users(
    auth: CanRead,
    session: Session,
    params: Annotated[PageParams, Depends(page_params)],
    tenant_id: uuid.UUID | None = None,
) -> Page[UserRead]:
    stmt = select(User)
    if auth.tenant_id:
        tenant_id = auth.tenant_id
    if tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    users, meta = await paginate(session, stmt, User, params, SEARCH_FIELDS)
    return Page[UserRead](data=[UserRead.model_validate(u) for u in users], meta=meta)


@router.get("/stats", response_model=UserStats)
async def user_stats(auth: CanRead, session: Session) -> UserStats:
    """Counts for the caller's tenant, or platform-wide for platform users."""
    def scoped(stmt):
        if auth.tenant_id:
            return stmt.where(User.tenant_id == auth.tenant_id)
        return stmt

    total = (await session.execute(scoped(select(func.count(User.id))))).scalar_one()
    active = (
        await session.execute(
            scoped(select(func.count(User.id)).where(User.is_active.is_(True)))  # type: ignore[union-attr]
        )
    ).scalar_one()
    by_role_rows = await session.execute(
        scoped(select(Role.name, func.count(User.id)).join(User, User.role_id == Role.id))
        .group_by(Role.name)
    )
    return UserStats(
        total=total,
        active=active,
        inactive=total - active,
        by_role={name: count for name, count in by_role_rows.all()},
    )


# ── Bulk export (must be before /{user_id} routes) ───────────

EXPORT_COLUMNS = ("id", "email", "name", "role_id", "tenant_id", "is_active", "created_at")


@router.get("/export")
async def export_users(
    auth: CanRead,
    session: Session,
    tenant_id: uuid.UUID | None = None,
    format: Literal["json", "csv"] = "json",
    limit: int = 1000,
):
    """Export the users the caller may read, newest first."""
    limit = min(max(limit, 1), 1000)

    stmt = select(User)
    if auth.tenant_id:
        tenant_id = auth.tenant_id
    if tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    stmt = stmt.order_by(User.created_at.desc()).limit(limit)  # type: ignore[union-attr]

    result = await session.execute(stmt)
    users = [
        UserRead.model_validate(u)
        for u in result.scalars().all()
        if auth.ability.can(Action.READ, Subject.USER, u)
    ]

    if format == "csv":
        return _export_csv(users)
    return {
        "users": [u.model_dump(mode="json") for u in users],
        "exported_at": utcnow().isoformat(),
    }


def _export_csv(users: list[UserRead]) -> StreamingResponse:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for user in users:
        writer.writerow([
            str(user.id), user.email, user.name, str(user.role_id),
            str(user.tenant_id) if user.tenant_id else "", user.is_active,
            user.created_at.isoformat(),
        ])
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=users_export.csv"},
    )


@router.get("/{user_id}", response_model=UserDetail)
async def get_user(user_id: uuid.UUID, auth: CanRead, session: Session) -> UserDetail:
    user = await _get_or_404(session, user_id)
    ensure_can(auth, Action.READ, Subject.USER, user)
    return UserDetail.model_validate(user)


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    request: Request,
    auth: CanUpdate,
    session: Session,
) -> UserRead:
    user = await _get_or_404(session, user_id)
    ensure_can(auth, Action.UPDATE, Subject.USER, user)
    before = snapshot(user)

    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in update_data and update_data["email"] != user.email:
        await _ensure_email_free(session, update_data["email"])
    if "role_id" in update_data and update_data["role_id"] != user.role_id:
        # Users may edit their own profile but never their own role.
        if not auth.ability.can(Action.UPDATE, Subject.ROLE):
            raise ForbiddenError("You are not allowed to change roles")
        await _ensure_role_exists(session, update_data["role_id"])
    if "password" in update_data:
        user.password_hash = hash_password(update_data.pop("password"))
    for field, value in update_data.items():
        setattr(user, field, value)

    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    updated = UserRead.model_validate(user)

    await audit_recorder.record(
        session,
        action="UPDATE_USER",
        subject=Subject.USER,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=user.id,
        before=before,
        after=snapshot(user),
        request=request,
    )
    return updated


@router.patch("/{user_id}/toggle-status", response_model=UserRead)
async def toggle_user_status(
    user_id: uuid.UUID,
    request: Request,
    auth: CanUpdate,
    session: Session,
) -> UserRead:
    user = await _get_or_404(session, user_id)
    ensure_can(auth, Action.UPDATE, Subject.USER, user)
    before = snapshot(user)

    user.is_active = not user.is_active
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    toggled = UserRead.model_validate(user)

    await audit_recorder.record(
        session,
        action="TOGGLE_USER_STATUS",
        subject=Subject.USER,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=user.id,
        before=before,
        after=snapshot(user),
        request=request,
    )
    return toggled


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: uuid.UUID,
    request: Request,
    auth: CanDelete,
    session: Session,
) -> None:
    user = await _get_or_404(session, user_id)
    ensure_can(auth, Action.DELETE, Subject.USER, user)
    before = snapshot(user)

    await session.delete(user)
    await session.commit()

    await audit_recorder.record(
        session,
        action="DELETE_USER",
        subject=Subject.USER,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=user_id,
        before=before,
        request=request,
    )


# ── Internal helpers ─────────────────────────────────────────

async def _get_or_404(session: Session, user_id: uuid.UUID) -> User:
    user = await load_user(session, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _ensure_email_free(session: Session, email: str) -> None:
    result = await session.execute(select(User.id).where(User.email == email))
    if result.first() is not None:
        raise ConflictError("A user with this email already exists")


async def _ensure_role_exists(session: Session, role_id: uuid.UUID) -> None:
    if await session.get(Role, role_id) is None:
        raise NotFoundError("Role not found")
