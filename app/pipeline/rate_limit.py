"""Fixed-window rate limiting backed by the shared cache store.

The read-increment-write sequence is not atomic: concurrent requests in the
same window may under-count. A store failure lets the request through as the first of a fresh window.
"""

import logging
import math
import re
import time
from collections.abc import Callable
from datetime import datetime, timezone

from fastapi import HTTPException
from starlette.requests import Request
from starlette.responses import Response

from app.core.cache import CacheBackend, CacheBackendError
from app.core.exceptions import TooManyRequestsError
from app.pipeline.base import CallNext, client_ip, request_principal, route_path
from app.pipeline.options import RateLimitOptions, RoutePolicy

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9]")


def rate_limit_key(request: Request, options: RateLimitOptions) -> str:
    parts = [
        "rate_limit",
        _UNSAFE_KEY_CHARS.sub("_", route_path(request)),
        request.method.lower(),
        client_ip(request),
    ]
    principal = request_principal(request)
    if principal is not None:
        if options.per_user:
            parts.append(f"user:{principal.user_id}")
        if options.per_tenant and principal.tenant_id:
            parts.append(f"tenant:{principal.tenant_id}")
    return ":".join(parts)


class RateLimitStage:
    """``clock`` returns epoch seconds; reset times are stored in milliseconds."""

    def __init__(self, store: CacheBackend, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    async def __call__(self, request: Request, call_next: CallNext, policy: RoutePolicy) -> Response:
        options = policy.rate_limit
        if options is None:
            return await call_next(request)

        key = rate_limit_key(request, options)
        now_ms = int(self.clock() * 1000)
        try:
            count, reset_time = await self._hit(key, options, now_ms)
        except CacheBackendError:
            logger.exception("Rate limit store failed for key %s, allowing request", key)
            count, reset_time = 1, now_ms + options.window * 1000

        headers = self._headers(options, count, reset_time, now_ms)
        if count > options.limit:
            retry_after = max(0, math.ceil((reset_time - now_ms) / 1000))
            logger.warning(
                "Rate limit exceeded for key %s (%d/%d)", key, count, options.limit
            )
            raise TooManyRequestsError(retry_after, detail=options.message, headers=headers)

        logger.debug("Rate limit check passed for key %s (%d/%d)", key, count, options.limit)
        try:
            response = await call_next(request)
        except HTTPException as exc:
            exc.headers = {**headers, **(exc.headers or {})}
            raise
        response.headers.update(headers)
        return response

    async def _hit(self, key: str, options: RateLimitOptions, now_ms: int) -> tuple[int, int]:
        info = await self.store.get(key)
        if info and info.get("reset_time", 0) > now_ms:
            count = int(info["count"]) + 1
            reset_time = int(info["reset_time"])
            ttl = max(1, math.ceil((reset_time - now_ms) / 1000))
        else:
            count = 1
            reset_time = now_ms + options.window * 1000
            ttl = options.window
        await self.store.set(key, {"count": count, "reset_time": reset_time}, ttl)
        return count, reset_time

    @staticmethod
    def _headers(
        options: RateLimitOptions, count: int, reset_time: int, now_ms: int
    ) -> dict[str, str]:
        reset_at = datetime.fromtimestamp(reset_time / 1000, tz=timezone.utc)
        return {
            "X-RateLimit-Limit": str(options.limit),
            "X-RateLimit-Remaining": str(max(0, options.limit - count)),
            "X-RateLimit-Reset": str(max(0, math.ceil((reset_time - now_ms) / 1000))),
            "X-RateLimit-Reset-Time": reset_at.isoformat(),
        }
