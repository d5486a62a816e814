"""Operational views: detailed health, record counts and per-tenant usage."""

import logging
import time
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.api.deps import AuthContext, Session, require_ability
from app.api.routing import PipelineRoute
from app.core.ability import Action, Subject
from app.core.database import ping
from app.core.exceptions import BadRequestError
from app.core.metrics import MetricsRegistry
from app.models.base import utcnow
from app.models.permission import Permission
from app.models.role import Role
from app.models.tenant import Tenant
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/monitoring", tags=["monitoring"], route_class=PipelineRoute)

CanRead = Annotated[AuthContext, Depends(require_ability(Action.READ, Subject.MONITORING))]


def _metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


@router.get("/health-detailed")
async def health_detailed(request: Request, session: Session) -> JSONResponse:
    """Database, cache and application checks; 503 when any dependency is down."""
    started = time.perf_counter()
    try:
        await ping(session)
        database: dict[str, Any] = {"status": "up"}
    except SQLAlchemyError:
        logger.exception("Detailed health check: database unreachable")
        database = {"status": "down"}
    database["response_time_ms"] = round((time.perf_counter() - started) * 1000, 2)

    cache_up = await request.app.state.cache.ping()
    metrics = _metrics(request)
    checks = {
        "database": database,
        "cache": {"status": "up" if cache_up else "down"},
        "application": {
            "uptime_seconds": round(time.time() - metrics.started_at, 1),
            "requests_total": metrics.total(metrics.http_requests),
            "errors_total": metrics.total(metrics.errors),
        },
    }
    healthy = database["status"] == "up" and cache_up
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "timestamp": utcnow().isoformat(),
            "checks": checks,
        },
    )


@router.get("/database-stats")
async def database_stats(auth: CanRead, session: Session) -> dict[str, Any]:
    """Row counts; tenant users only see their own tenant's users."""
    users_stmt = select(func.count(User.id))
    if auth.tenant_id:
        users_stmt = users_stmt.where(User.tenant_id == auth.tenant_id)

    records = {
        "users": (await session.execute(users_stmt)).scalar_one(),
        "roles": (await session.execute(select(func.count(Role.id)))).scalar_one(),
        "permissions": (await session.execute(select(func.count(Permission.id)))).scalar_one(),
        "tenants": (await session.execute(select(func.count(Tenant.id)))).scalar_one(),
    }
    return {
        "timestamp": utcnow().isoformat(),
        "tenant_id": str(auth.tenant_id) if auth.tenant_id else None,
        "records": records,
    }


@router.get("/tenant-usage")
async def tenant_usage(
    request: Request,
    auth: CanRead,
    session: Session,
    tenant_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Request and operation counts recorded for one tenant since startup."""
    if auth.tenant_id:
        tenant_id = auth.tenant_id
    if tenant_id is None:
        raise BadRequestError("Tenant ID is required")

    metrics = _metrics(request)
    label = str(tenant_id)
    total = (
        await session.execute(select(func.count(User.id)).where(User.tenant_id == tenant_id))
    ).scalar_one()
    active = (
        await session.execute(
            select(func.count(User.id)).where(
                User.tenant_id == tenant_id, User.is_active.is_(True)  # type: ignore[union-attr]
            )
        )
    ).scalar_one()
    return {
        "timestamp": utcnow().isoformat(),
        "tenant_id": label,
        "requests": {
            "total": metrics.total(metrics.http_requests, tenant_id=label),
            "errors": metrics.total(metrics.errors, tenant_id=label),
            **metrics.tenant_usage(label),
        },
        "users": {"total": total, "active": active},
    }
