"""Read-only access to the audit trail."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import select

from app.api.deps import AuthContext, Session, ensure_can, require_ability
from app.api.routing import PipelineRoute
from app.core.ability import Action, Subject
from app.core.exceptions import NotFoundError
from app.core.pagination import Page, PageParams, page_params, paginate
from app.models.audit_log import AuditLog, AuditLogRead

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"], route_class=PipelineRoute)

SEARCH_FIELDS = ("action", "subject", "subject_id")

CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.AUDIT_LOG))]


@router.get("", response_model=Page[AuditLogRead])
async def list_audit_logs(
    auth: CanRead,
    session: Session,
    params: Annotated[PageParams, Depends(page_params)],
    tenant_id: str | None = None,
) -> Page[AuditLogRead]:
    stmt = select(AuditLog)
    if auth.tenant_id:
        tenant_id = str(auth.tenant_id)
    if tenant_id:
        stmt = stmt.where(AuditLog.tenant_id == tenant_id)
    logs, meta = await paginate(session, stmt, AuditLog, params, SEARCH_FIELDS)
    return Page[AuditLogRead](data=[AuditLogRead.model_validate(log) for log in logs], meta=meta)


@router.get("/{log_id}", response_model=AuditLogRead)
async def get_audit_log(log_id: uuid.UUID, auth: CanRead, session: Session) -> AuditLogRead:
    log = await session.get(AuditLog, log_id)
    if log is None:
        raise NotFoundError("Audit log not found")
    ensure_can(auth, Action.READ, Subject.AUDIT_LOG, log)
    return AuditLogRead.model_validate(log)
