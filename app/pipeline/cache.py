"""Cache-aside stage for reads and pattern invalidation for writes."""

import logging

from starlette.requests import Request
from starlette.responses import Response

from app.core.cache import CacheService
from app.core.metrics import MetricsRegistry
from app.pipeline.base import CallNext, Principal, request_principal, route_path
from app.pipeline.options import CacheInvalidateOptions, CacheOptions, RoutePolicy

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CACHE_STATUS_HEADER = "X-Cache-Status"


def build_cache_key(
    options: CacheOptions,
    path: str,
    method: str,
    principal: Principal | None,
    path_params: dict[str, object],
    query_params: dict[str, object],
) -> str:
    """Deterministic key: params and query are sorted, empty segments dropped."""
    parts: list[str | None] = [options.key or path, method.upper()]
    if options.include_tenant and principal and principal.tenant_id:
        parts.append(f"tenant:{principal.tenant_id}")
    if options.include_user and principal:
        parts.append(f"user:{principal.user_id}")
    if options.include_params and path_params:
        parts.append("params:" + ",".join(f"{k}:{path_params[k]}" for k in sorted(path_params)))
    if options.include_query and query_params:
        parts.append("query:" + ",".join(f"{k}:{query_params[k]}" for k in sorted(query_params)))
    return CacheService.generate_key(parts)


class CacheStage:
    def __init__(self, cache: CacheService, metrics: MetricsRegistry | None = None) -> None:
        self.cache = cache
        self.metrics = metrics

    async def __call__(self, request: Request, call_next: CallNext, policy: RoutePolicy) -> Response:
        if request.method == "GET" and policy.cache is not None:
            return await self._read_through(request, call_next, policy.cache)
        if request.method in WRITE_METHODS and policy.invalidate is not None:
            response = await call_next(request)
            if 200 <= response.status_code < 300:
                await self._invalidate(request, policy.invalidate)
            return response
        return await call_next(request)

    async def _read_through(
        self, request: Request, call_next: CallNext, options: CacheOptions
    ) -> Response:
        principal = request_principal(request)
        # Anonymous responses are never shared.
        if principal is None:
            return await call_next(request)

        route = route_path(request)
        key = build_cache_key(
            options,
            route,
            request.method,
            principal,
            dict(request.path_params),
            dict(request.query_params),
        )

        cached = await self.cache.get(key)
        if cached is not None:
            self._count(hit=True, route=route)
            return Response(
                content=cached["body"],
                status_code=cached["status_code"],
                media_type=cached.get("media_type"),
                headers={
                    CACHE_STATUS_HEADER: "HIT",
                    "Cache-Control": f"max-age={options.ttl}",
                },
            )

        self._count(hit=False, route=route)
        response = await call_next(request)
        response.headers[CACHE_STATUS_HEADER] = "MISS"

        body = getattr(response, "body", None)
        if 200 <= response.status_code < 300 and body is not None:
            await self.cache.set(
                key,
                {
                    "status_code": response.status_code,
                    "body": body.decode("utf-8"),
                    "media_type": response.media_type,
                },
                ttl=options.ttl,
            )
        return response

    async def _invalidate(self, request: Request, options: CacheInvalidateOptions) -> None:
        principal = request_principal(request)
        for key in options.keys:
            await self.cache.delete(key)
        for pattern in options.patterns:
            await self.cache.invalidate_pattern(pattern)
        if options.tenant and principal and principal.tenant_id:
            await self.cache.invalidate_tenant(principal.tenant_id)
        if options.user and principal:
            await self.cache.invalidate_user(principal.user_id, principal.tenant_id)

    def _count(self, hit: bool, route: str) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_cache(hit, route)
