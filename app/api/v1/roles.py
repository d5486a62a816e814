"""Roles CRUD. A role's permission set is replaced wholesale on update."""

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
from app.models.permission import Permission
from app.models.role import Role, RoleCreate, RoleRead, RoleUpdate
from app.models.user import User
from app.services.audit import audit_recorder

router = APIRouter(prefix="/roles", tags=["roles"], route_class=PipelineRoute)

SEARCH_FIELDS = ("name", "description")

CanCreate = Annotated[AuthContext, Depends(require_ability(Action.CREATE, Subject.ROLE))]
CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.ROLE))]
CanUpdate = Annotated[AuthContext, Depends(require_ability(Action.UPDATE, Subject.ROLE))]
CanDelete = Annotated[AuthContext, Depends(require_ability(Action.DELETE, Subject.ROLE))]


def _audit_view(role: Role) -> dict:
    return RoleRead.model_validate(role).model_dump(mode="json")


@router.post("", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    request: Request,
    auth: CanCreate,
    session: Session,
) -> RoleRead:
    await _ensure_name_free(session, body.name)
    permissions = await _load_permissions(session, body.permission_ids)

    role = Role(name=body.name, description=body.description)
    role.permissions = permissions
    session.add(role)
    await session.commit()

    role = await _get_or_404(session, role.id)
    created = RoleRead.model_validate(role)
    await audit_recorder.record(
        session,
        action="CREATE_ROLE",
        subject=Subject.ROLE,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=role.id,
        after=created.model_dump(mode="json"),
        request=request,
    )
    return created


@router.get("", response_model=Page[RoleRead])
async def list_roles(
    auth: CanRead,
    session: Session,
    params: Annotated[PageParams, Depends(page_params)],
) -> Page[RoleRead]:
    roles, meta = await paginate(
        session,
        select(Role),
        Role,
        params,
        SEARCH_FIELDS,
        options=(selectinload(Role.permissions),),
    )
    return Page[RoleRead](data=[RoleRead.model_validate(r) for r in roles], meta=meta)


@router.get("/{role_id}", response_model=RoleRead)
async def get_role(role_id: uuid.UUID, auth: CanRead, session: Session) -> RoleRead:
    return RoleRead.model_validate(await _get_or_404(session, role_id))


@router.patch("/{role_id}", response_model=RoleRead)
async def update_role(
    role_id: uuid.UUID,
    body: RoleUpdate,
    request: Request,
    auth: CanUpdate,
    session: Session,
) -> RoleRead:
    role = await _get_or_404(session, role_id)
    before = _audit_view(role)

    if body.name is not None and body.name != role.name:
        await _ensure_name_free(session, body.name)
        role.name = body.name
    if body.description is not None:
        role.description = body.description
    if body.permission_ids is not None:
        role.permissions = await _load_permissions(session, body.permission_ids)

    role.updated_at = utcnow()
    session.add(role)
    await session.commit()

    role = await _get_or_404(session, role_id)
    updated = RoleRead.model_validate(role)
    await audit_recorder.record(
        session,
        action="UPDATE_ROLE",
        subject=Subject.ROLE,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=role_id,
        before=before,
        after=updated.model_dump(mode="json"),
        request=request,
    )
    return updated


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: uuid.UUID,
    request: Request,
    auth: CanDelete,
    session: Session,
) -> None:
    role = await _get_or_404(session, role_id)
    assigned = await session.execute(select(User.id).where(User.role_id == role_id))
    if assigned.first() is not None:
        raise ConflictError("Role is assigned to users")
    before = _audit_view(role)

    await session.delete(role)
    await session.commit()

    await audit_recorder.record(
        session,
        action="DELETE_ROLE",
        subject=Subject.ROLE,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=role_id,
        before=before,
        request=request,
    )


# ── Internal helpers ─────────────────────────────────────────

async def _get_or_404(session: Session, role_id: uuid.UUID) -> Role:
    stmt = (
        select(Role)
        .where(Role.id == role_id)
        .options(selectinload(Role.permissions))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role not found")
    return role


async def _ensure_name_free(session: Session, name: str) -> None:
    result = await session.execute(select(Role.id).where(Role.name == name))
    if result.first() is not None:
        raise ConflictError("Role with this name already exists")


async def _load_permissions(session: Session, permission_ids: list[uuid.UUID]) -> list[Permission]:
    unique_ids = set(permission_ids)
    if not unique_ids:
        return []
    result = await session.execute(select(Permission).where(Permission.id.in_(unique_ids)))  # type: ignore[union-attr]
    permissions = list(result.scalars().all())
    if len(permissions) != len(unique_ids):
        raise NotFoundError("Permission not found")
    return permissions
