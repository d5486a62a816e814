"""User model: belongs to exactly one role and, optionally, one tenant."""

import uuid
from datetime import datetime

from pydantic import EmailStr
from sqlmodel import Field, Relationship, SQLModel

from app.models.base import TimestampMixin, new_uuid
from app.models.role import Role, RoleRead


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    email: str = Field(max_length=320, unique=True, nullable=False, index=True)
    name: str = Field(default="", max_length=255)
    password_hash: str = Field(nullable=False)
    role_id: uuid.UUID = Field(foreign_key="roles.id", nullable=False, index=True)
    # NULL for platform users that do not belong to any tenant
    tenant_id: uuid.UUID | None = Field(default=None, foreign_key="tenants.id", index=True)
    is_active: bool = Field(default=True)

    role: Role | None = Relationship()


# ── Pydantic schemas ─────────────────────────────────────────

class UserCreate(SQLModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=255)
    role_id: uuid.UUID
    tenant_id: uuid.UUID | None = None


class UserUpdate(SQLModel):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=8, max_length=128)
    name: str | None = Field(default=None, max_length=255)
    role_id: uuid.UUID | None = None


class UserRead(SQLModel):
    id: uuid.UUID
    email: str
    name: str
    role_id: uuid.UUID
    tenant_id: uuid.UUID | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserDetail(UserRead):
    role: RoleRead | None = None


class UserStats(SQLModel):
    total: int
    active: int
    inactive: int
    by_role: dict[str, int]
