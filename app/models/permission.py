"""Permission model: an (action, subject) pair granted through roles."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from app.models.base import TimestampMixin, new_uuid

if TYPE_CHECKING:
    from app.models.role import Role


class RolePermission(SQLModel, table=True):
    """Association table between roles and permissions."""

    __tablename__ = "role_permissions"

    role_id: uuid.UUID = Field(foreign_key="roles.id", primary_key=True)
    permission_id: uuid.UUID = Field(foreign_key="permissions.id", primary_key=True)


class Permission(TimestampMixin, SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("action", "subject", name="uq_permissions_action_subject"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    action: str = Field(max_length=50, nullable=False)
    subject: str = Field(max_length=100, nullable=False)

    roles: list["Role"] = Relationship(back_populates="permissions", link_model=RolePermission)


# ── Pydantic schemas ─────────────────────────────────────────

class PermissionCreate(SQLModel):
    action: str = Field(min_length=1, max_length=50)
    subject: str = Field(min_length=1, max_length=100)


class PermissionUpdate(SQLModel):
    action: str | None = Field(default=None, min_length=1, max_length=50)
    subject: str | None = Field(default=None, min_length=1, max_length=100)


class PermissionRead(SQLModel):
    id: uuid.UUID
    action: str
    subject: str
    created_at: datetime
    updated_at: datetime
