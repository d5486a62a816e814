"""Tenant endpoints: thin HTTP layer over the lifecycle manager."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import AuthContext, Session, require_ability
from app.api.routing import PipelineRoute
from app.core.ability import Action, Subject
from app.core.pagination import Page, PageParams, page_params
from app.models.tenant import TenantCreate, TenantRead, TenantUpdate
from app.services.audit import audit_recorder, snapshot
from app.services.tenant_schema import SchemaProvisioner, get_schema_provisioner
from app.services.tenants import TenantLifecycleManager

router = APIRouter(prefix="/tenants", tags=["tenants"], route_class=PipelineRoute)

CanCreate = Annotated[AuthContext, Depends(require_ability(Action.CREATE, Subject.TENANT))]
CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.TENANT))]
CanUpdate = Annotated[AuthContext, Depends(require_ability(Action.UPDATE, Subject.TENANT))]
CanDelete = Annotated[AuthContext, Depends(require_ability(Action.DELETE, Subject.TENANT))]


def get_tenant_manager(
    session: Session,
    provisioner: Annotated[SchemaProvisioner, Depends(get_schema_provisioner)],
) -> TenantLifecycleManager:
    return TenantLifecycleManager(session, provisioner)


Manager = Annotated[TenantLifecycleManager, Depends(get_tenant_manager)]


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    request: Request,
    auth: CanCreate,
    manager: Manager,
) -> TenantRead:
    """Insert the tenant row, then provision its schema."""
    tenant = await manager.create(body)
    created = TenantRead.model_validate(tenant)

    await audit_recorder.record(
        manager.session,
        action="CREATE_TENANT",
        subject=Subject.TENANT,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=tenant.id,
        after=snapshot(tenant),
        request=request,
    )
    return created


@router.get("", response_model=Page[TenantRead])
async def list_tenants(
    auth: CanRead,
    manager: Manager,
    params: Annotated[PageParams, Depends(page_params)],
) -> Page[TenantRead]:
    tenants, meta = await manager.list_page(params)
    return Page[TenantRead](data=[TenantRead.model_validate(t) for t in tenants], meta=meta)


@router.get("/{tenant_id}", response_model=TenantRead)
async def get_tenant(tenant_id: uuid.UUID, auth: CanRead, manager: Manager) -> TenantRead:
    return TenantRead.model_validate(await manager.get(tenant_id))


@router.patch("/{tenant_id}", response_model=TenantRead)
async def update_tenant(
    tenant_id: uuid.UUID,
    body: TenantUpdate,
    request: Request,
    auth: CanUpdate,
    manager: Manager,
) -> TenantRead:
    before = snapshot(await manager.get(tenant_id))
    tenant = await manager.update(tenant_id, body)
    updated = TenantRead.model_validate(tenant)

    await audit_recorder.record(
        manager.session,
        action="UPDATE_TENANT",
        subject=Subject.TENANT,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=tenant_id,
        before=before,
        after=snapshot(tenant),
        request=request,
    )
    return updated


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tenant(
    tenant_id: uuid.UUID,
    request: Request,
    auth: CanDelete,
    manager: Manager,
) -> None:
    """Drop the tenant's schema and delete its row."""
    tenant = await manager.remove(tenant_id)

    await audit_recorder.record(
        manager.session,
        action="DELETE_TENANT",
        subject=Subject.TENANT,
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        subject_id=tenant_id,
        before=snapshot(tenant),
        request=request,
    )
