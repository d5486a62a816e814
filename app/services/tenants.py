"""Tenant lifecycle: the tenant row plus its dedicated database schema.

The row and the schema DDL are not covered by one transaction. If the DDL
fails after the row is committed, the error is logged and re-raised and the
row stays behind.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from app.core.exceptions import ConflictError, NotFoundError
from app.core.pagination import PageMeta, PageParams, paginate
from app.models.base import utcnow
from app.models.tenant import Tenant, TenantCreate, TenantUpdate
from app.models.user import User
from app.services.tenant_schema import SchemaProvisioner

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "schema_name")


class TenantLifecycleManager:
    def __init__(self, session: AsyncSession, provisioner: SchemaProvisioner) -> None:
        self.session = session
        self.provisioner = provisioner

    async def create(self, data: TenantCreate) -> Tenant:
        stmt = select(Tenant).where(
            or_(Tenant.name == data.name, Tenant.schema_name == data.schema_name)
        )
        result = await self.session.execute(stmt)
        if result.scalars().first() is not None:
            raise ConflictError("Tenant with this name or schema already exists")

        tenant = Tenant(name=data.name, schema_name=data.schema_name)
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)

        try:
            await self.provisioner.create_schema(self.session, tenant.schema_name)
        except Exception:
            logger.exception(
                "Schema provisioning failed for tenant %s (schema %s)",
                tenant.id,
                tenant.schema_name,
            )
            raise
        logger.info("Tenant %s created with schema %s", tenant.id, tenant.schema_name)
        return tenant

    async def get(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return tenant

    async def list_page(self, params: PageParams) -> tuple[list[Tenant], PageMeta]:
        return await paginate(self.session, select(Tenant), Tenant, params, SEARCH_FIELDS)

    async def update(self, tenant_id: uuid.UUID, data: TenantUpdate) -> Tenant:
        tenant = await self.get(tenant_id)
        if data.name != tenant.name:
            stmt = select(Tenant).where(Tenant.name == data.name, Tenant.id != tenant_id)
            result = await self.session.execute(stmt)
            if result.scalars().first() is not None:
                raise ConflictError("Tenant with this name already exists")

        tenant.name = data.name
        tenant.updated_at = utcnow()
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant

    async def remove(self, tenant_id: uuid.UUID) -> Tenant:
        """Drop the schema (cascading its objects), then delete the row."""
        tenant = await self.get(tenant_id)
        members = await self.session.execute(select(User.id).where(User.tenant_id == tenant_id))
        if members.first() is not None:
            raise ConflictError("Tenant still has users")
        try:
            await self.provisioner.drop_schema(self.session, tenant.schema_name)
        except Exception:
            logger.exception("Dropping schema %s failed", tenant.schema_name)
            raise
        await self.session.delete(tenant)
        await self.session.commit()
        logger.info("Tenant %s removed", tenant_id)
        return tenant
