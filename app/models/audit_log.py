"""AuditLog model: append-only record of a mutation."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.models.base import new_uuid, utcnow


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    # Plain strings: "system" and "public" stand in for a missing actor / tenant
    user_id: str = Field(max_length=64, nullable=False, index=True)
    tenant_id: str = Field(max_length=64, nullable=False, index=True)
    action: str = Field(max_length=100, nullable=False)
    subject: str = Field(max_length=100, nullable=False)
    subject_id: str | None = Field(default=None, max_length=64)

    data_before: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    data_after: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    client_info: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class AuditLogRead(SQLModel):
    id: uuid.UUID
    user_id: str
    tenant_id: str
    action: str
    subject: str
    subject_id: str | None
    data_before: dict[str, Any] | None
    data_after: dict[str, Any] | None
    client_info: dict[str, Any] | None
    created_at: datetime
