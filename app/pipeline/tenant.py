"""Tenant isolation stage.

Resolves the tenant a request targets, rejects cross-tenant access and
optionally pins the tenant id into the query string and JSON body.
"""

import json
import logging

from starlette.requests import Request
from starlette.responses import Response

from app.core.exceptions import BadRequestError, ForbiddenError
from app.core.metrics import MetricsRegistry
from app.pipeline.base import (
    CallNext,
    Principal,
    client_ip,
    is_json,
    parse_json,
    rebuild_request,
    request_principal,
    route_path,
)
from app.pipeline.options import RoutePolicy, TenantOptions

logger = logging.getLogger(__name__)

TENANT_HEADER = "x-tenant-id"
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def extract_tenant_id(
    request: Request,
    options: TenantOptions,
    principal: Principal | None,
    body: object = None,
) -> str | None:
    """Priority: path params > query > JSON body > principal > header."""
    field = options.tenant_field
    candidates = (
        request.path_params.get(field),
        request.query_params.get(field),
        body.get(field) if isinstance(body, dict) else None,
        principal.tenant_id if principal else None,
        request.headers.get(TENANT_HEADER),
    )
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return None


class TenantStage:
    def __init__(self, metrics: MetricsRegistry | None = None) -> None:
        self.metrics = metrics

    async def __call__(self, request: Request, call_next: CallNext, policy: RoutePolicy) -> Response:
        options = policy.tenant
        if options is None:
            return await call_next(request)

        principal = request_principal(request)
        raw_body: bytes | None = None
        body = None
        if request.method in BODY_METHODS and is_json(request):
            raw_body = await request.body()
            body = parse_json(raw_body)

        tenant_id = extract_tenant_id(request, options, principal, body)

        if options.validate and not tenant_id:
            logger.warning("Tenant ID not found in request %s %s", request.method, request.url.path)
            raise BadRequestError("Tenant ID is required")

        if options.isolation:
            self._check_isolation(request, options, principal, tenant_id)

        if options.auto_filter and tenant_id:
            request = self._apply_filter(request, options, tenant_id, raw_body, body)
        elif raw_body is not None:
            request = rebuild_request(request, body=raw_body)

        response = await call_next(request)

        if options.collect_metrics and tenant_id and principal and self.metrics is not None:
            self.metrics.increment_tenant_operations(tenant_id, "request", route_path(request))
        if options.log_access:
            logger.info(
                "Tenant access %s %s",
                request.method,
                request.url.path,
                extra={
                    "tenant_id": tenant_id,
                    "user_id": principal.user_id if principal else None,
                    "ip": client_ip(request),
                    "user_agent": request.headers.get("user-agent"),
                },
            )
        return response

    @staticmethod
    def _check_isolation(
        request: Request,
        options: TenantOptions,
        principal: Principal | None,
        tenant_id: str | None,
    ) -> None:
        # Platform users (no tenant of their own) are not confined.
        if principal is None or not principal.tenant_id:
            return
        if not tenant_id or tenant_id == principal.tenant_id:
            return
        if not options.allow_cross_tenant:
            logger.warning(
                "Cross-tenant access denied: user %s of tenant %s requested tenant %s",
                principal.user_id,
                principal.tenant_id,
                tenant_id,
            )
            raise ForbiddenError("Access to other tenant data is not allowed")
        logger.info(
            "Cross-tenant access allowed: user %s of tenant %s requested tenant %s",
            principal.user_id,
            principal.tenant_id,
            tenant_id,
        )

    @staticmethod
    def _apply_filter(
        request: Request,
        options: TenantOptions,
        tenant_id: str,
        raw_body: bytes | None,
        body: object,
    ) -> Request:
        field = options.tenant_field
        query = dict(request.query_params)
        query[field] = tenant_id
        if isinstance(body, dict):
            body[field] = tenant_id
            raw_body = json.dumps(body).encode("utf-8")
        logger.debug("Tenant filter %s=%s added to %s %s", field, tenant_id, request.method, request.url.path)
        return rebuild_request(request, query=query, body=raw_body)
