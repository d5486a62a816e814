"""Request metrics stage: counters, durations and error counts per route."""

import logging
import time

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import Response

from app.core.metrics import MetricsRegistry
from app.pipeline.base import CallNext, request_principal, route_path
from app.pipeline.options import MetricsOptions, RoutePolicy

logger = logging.getLogger(__name__)

METRICS_HEADER = "X-Metrics-Collected"

_OPERATION_TYPES = {
    "GET": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def operation_type(method: str) -> str:
    return _OPERATION_TYPES.get(method.upper(), "unknown")


def resource_name(route: str) -> str:
    """``/v1/users/{user_id}`` -> ``users``."""
    segments = [
        s for s in route.split("/") if s and not s.startswith("{") and not (s[0] == "v" and s[1:].isdigit())
    ]
    return segments[0] if segments else "unknown"


class MetricsStage:
    def __init__(self, metrics: MetricsRegistry) -> None:
        self.metrics = metrics

    async def __call__(self, request: Request, call_next: CallNext, policy: RoutePolicy) -> Response:
        options = policy.metrics
        if options is None:
            return await call_next(request)

        started = time.perf_counter()
        route = options.name or route_path(request)
        tenant_id = self._tenant_id(request, options)

        try:
            response = await call_next(request)
        except (HTTPException, RequestValidationError) as exc:
            status_code = getattr(exc, "status_code", 422)
            self._record(request, options, route, tenant_id, status_code, started)
            self._safely(self.metrics.increment_errors, type(exc).__name__, tenant_id, route)
            raise
        except Exception as exc:
            self._record(request, options, route, tenant_id, 500, started)
            self._safely(self.metrics.increment_errors, type(exc).__name__, tenant_id, route)
            raise

        self._record(request, options, route, tenant_id, response.status_code, started)
        if response.status_code >= 400:
            self._safely(
                self.metrics.increment_errors, f"HttpError{response.status_code}", tenant_id, route
            )
        if tenant_id and options.track_tenant_operations:
            self._safely(
                self.metrics.increment_tenant_operations,
                tenant_id,
                operation_type(request.method),
                resource_name(route),
            )
        response.headers[METRICS_HEADER] = "true"
        return response

    @staticmethod
    def _tenant_id(request: Request, options: MetricsOptions) -> str | None:
        if not options.include_tenant:
            return None
        # Only a verified token may name a tenant label value.
        principal = request_principal(request)
        return principal.tenant_id if principal else None

    def _record(
        self,
        request: Request,
        options: MetricsOptions,
        route: str,
        tenant_id: str | None,
        status_code: int,
        started: float,
    ) -> None:
        duration = time.perf_counter() - started
        if options.collect_counter:
            self._safely(
                self.metrics.increment_http_requests, request.method, route, status_code, tenant_id
            )
        if options.collect_duration:
            self._safely(
                self.metrics.observe_http_duration, request.method, route, duration, tenant_id
            )

    @staticmethod
    def _safely(record, *args) -> None:
        try:
            record(*args)
        except Exception:
            logger.exception("Failed to record metric via %s", getattr(record, "__name__", record))
