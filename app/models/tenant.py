"""Tenant model: one isolated customer account backed by its own schema."""

import uuid
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid

# Postgres identifiers are at most 63 bytes. The schema name is interpolated
# into raw DDL, so this pattern is the only guard against injection.
SCHEMA_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"
SCHEMA_NAME_MAX_LENGTH = 63


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, unique=True, nullable=False, index=True)
    schema_name: str = Field(
        max_length=SCHEMA_NAME_MAX_LENGTH, unique=True, nullable=False, index=True
    )


# ── Pydantic schemas ─────────────────────────────────────────
# ``schema`` is the wire name; it shadows a BaseModel attribute, hence the aliases.

class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=255)
    schema_name: str = PydanticField(
        validation_alias=AliasChoices("schema", "schema_name"),
        min_length=1,
        max_length=SCHEMA_NAME_MAX_LENGTH,
        pattern=SCHEMA_NAME_PATTERN,
    )


class TenantUpdate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=255)


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    schema_name: str = PydanticField(
        validation_alias=AliasChoices("schema_name", "schema"),
        serialization_alias="schema",
    )
    created_at: datetime
    updated_at: datetime
