"""Permissions CRUD. Each (action, subject) pair exists at most once."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import selectinload
from sqlmodel import select

from app.api.deps import AuthContext, Session, require_ability
from app.api.routing import PipelineRoute
from app.core.ability import Action, Subject
from app.core.exceptions import ConflictError, NotFoundError
from app.core.pagination import Page, PageParams, page_params, paginate
from app.models.base import utcnow
from app.models.permission import Permission, PermissionCreate, PermissionRead, PermissionUpdate
from app.services.audit import audit_recorder, snapshot

router = APIRouter(prefix="/permissions", tags=["permissions"], route_class=PipelineRoute)

SEARCH_FIELDS = ("action", "subject")

CanCreate = Annotated[AuthContext, Depends(require_ability(Action.CREATE, Subject.PERMISSION))]
CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.PERMISSION))]
CanUpdate = Annotated[AuthContext, Depends(require_ability(Action.UPDATE, Subject.PERMISSION))]
CanDelete = Annotated[AuthContext, Depends(require_ability(Action.DELETE, Subject.PERMISSION))]


@router.post("", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
async def create_permission(
    body: PermissionCreate,
    request: Request,
    auth: CanCreate,
    session: Session,
) -> PermissionRead:
    await _ensure_pair_free(session, body.action, body.subject)

    permission = Permission(action=body.action, subject=body.subject)
    session.add(permission)
    await session.commit()
    await session.refresh(permission)
    created = PermissionRead.model_validate(permission)

    await audit_recorder.record(
        session,
        action="CREATE_PERMISSION",
        subject=Subject.PERMISSION,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=permission.id,
        after=snapshot(permission),
        request=request,
    )
    return created


@router.get("", response_model=Page[PermissionRead])
async def list_permissions(
    auth: CanRead,
    session: Session,
    params: Annotated[PageParams, Depends(page_params)],
) -> Page[PermissionRead]:
    permissions, meta = await paginate(
        session, select(Permission), Permission, params, SEARCH_FIELDS
    )
    return Page[PermissionRead](
        data=[PermissionRead.model_validate(p) for p in permissions], meta=meta
    )


@router.get("/{permission_id}", response_model=PermissionRead)
async def get_permission(
    permission_id: uuid.UUID, auth: CanRead, session: Session
) -> PermissionRead:
    return PermissionRead.model_validate(await _get_or_404(session, permission_id))


@router.patch("/{permission_id}", response_model=PermissionRead)
async def update_permission(
    permission_id: uuid.UUID,
    body: PermissionUpdate,
    request: Request,
    auth: CanUpdate,
    session: Session,
) -> PermissionRead:
    permission = await _get_or_404(session, permission_id)
    before = snapshot(permission)

    action = body.action or permission.action
    subject = body.subject or permission.subject
    if (action, subject) != (permission.action, permission.subject):
        await _ensure_pair_free(session, action, subject, exclude_id=permission_id)

    permission.action = action
    permission.subject = subject
    permission.updated_at = utcnow()
    session.add(permission)
    await session.commit()
    await session.refresh(permission)
    updated = PermissionRead.model_validate(permission)

    await audit_recorder.record(
        session,
        action="UPDATE_PERMISSION",
        subject=Subject.PERMISSION,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=permission_id,
        before=before,
        after=snapshot(permission),
        request=request,
    )
    return updated


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: uuid.UUID,
    request: Request,
    auth: CanDelete,
    session: Session,
) -> None:
    permission = await _get_or_404(session, permission_id)
    before = snapshot(permission)

    # roles is loaded, so the link rows are removed along with the permission
    await session.delete(permission)
    await session.commit()

    await audit_recorder.record(
        session,
        action="DELETE_PERMISSION",
        subject=Subject.PERMISSION,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=permission_id,
        before=before,
        request=request,
    )


# ── Internal helpers ─────────────────────────────────────────

async def _get_or_404(session: Session, permission_id: uuid.UUID) -> Permission:
    stmt = (
        select(Permission)
        .where(Permission.id == permission_id)
        .options(selectinload(Permission.roles))
    )
    result = await session.execute(stmt)
    permission = result.scalar_one_or_none()
    if permission is None:
        raise NotFoundError("Permission not found")
    return permission


async def _ensure_pair_free(
    session: Session, action: str, subject: str, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(Permission.id).where(Permission.action == action, Permission.subject == subject)
    if exclude_id is not None:
        stmt = stmt.where(Permission.id != exclude_id)
    result = await session.execute(stmt)
    if result.first() is not None:
        raise ConflictError("Permission with this action and subject already exists")
