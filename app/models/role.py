"""Role model: a named bundle of permissions assigned to users."""

import uuid
from datetime import datetime

from sqlmodel import Field, Relationship, SQLModel

from app.models.base import TimestampMixin, new_uuid
from app.models.permission import Permission, PermissionRead, RolePermission


class Role(TimestampMixin, SQLModel, table=True):
    __tablename__ = "roles"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=100, unique=True, nullable=False, index=True)
    description: str | None = Field(default=None, max_length=500)

    permissions: list[Permission] = Relationship(back_populates="roles", link_model=RolePermission)


# ── Pydantic schemas ─────────────────────────────────────────

class RoleCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_ids: list[uuid.UUID] = Field(default_factory=list)


class RoleUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_ids: list[uuid.UUID] | None = None


class RoleRead(SQLModel):
    id: uuid.UUID
    name: str
    description: str | None
    permissions: list[PermissionRead] = []
    created_at: datetime
    updated_at: datetime
