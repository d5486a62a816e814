"""Audit trail: one append-only row per mutation.

Handlers take the ``before``/``after`` snapshots themselves and pass them in.
Recording never fails the request; errors are logged and dropped.
"""

import logging
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from app.models.audit_log import AuditLog
from app.pipeline.base import client_ip

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
PUBLIC_TENANT = "public"
SECRET_FIELDS = frozenset({"password_hash", "password"})


def snapshot(obj: SQLModel | None) -> dict[str, Any] | None:
    """JSON-safe copy of a row's columns, without secrets."""
    if obj is None:
        return None
    return obj.model_dump(mode="json", exclude=set(SECRET_FIELDS))


def client_info(request: Request | None) -> dict[str, Any] | None:
    if request is None:
        return None
    return {"ip": client_ip(request), "user_agent": request.headers.get("user-agent")}


class AuditRecorder:
    async def record(
        self,
        session: AsyncSession,
        *,
        action: str,
        subject: str,
        user_id: object | None = None,
        tenant_id: object | None = None,
        subject_id: object | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        request: Request | None = None,
    ) -> AuditLog | None:
        if tenant_id is None and request is not None:
            tenant_id = request.headers.get("x-tenant-id")

        entry = AuditLog(
            user_id=str(user_id) if user_id else SYSTEM_ACTOR,
            tenant_id=str(tenant_id) if tenant_id else PUBLIC_TENANT,
            action=action,
            subject=subject,
            subject_id=str(subject_id) if subject_id else None,
            data_before=before,
            data_after=after,
            client_info=client_info(request),
        )
        try:
            session.add(entry)
            await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record audit log %s %s", action, subject)
            await session.rollback()
            return None
        logger.debug("Audit %s %s %s by %s", action, subject, entry.subject_id, entry.user_id)
        return entry


audit_recorder = AuditRecorder()
