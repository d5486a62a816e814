"""Stage plumbing shared by the request pipeline.

A stage is an async callable ``(request, call_next, policy) -> Response``.
Stages run in a fixed order around the route endpoint; each one may
short-circuit, replace the request it hands on, or decorate the response.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

from jose import JWTError
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message

from app.core.security import decode_jwt
from app.pipeline.options import RoutePolicy

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


class Stage(Protocol):
    async def __call__(
        self, request: Request, call_next: CallNext, policy: RoutePolicy
    ) -> Response: ...


# ── Principal ────────────────────────────────────────────────

@dataclass(frozen=True)
class Principal:
    """Identity carried by a verified bearer token."""

    user_id: str
    tenant_id: str | None = None
    role: str | None = None


_UNRESOLVED = object()


def request_principal(request: Request) -> Principal | None:
    """Decode the bearer token once per request; ``None`` when anonymous.

    Only the token signature is checked here. Routes still resolve the full
    user through ``get_auth_context``.
    """
    cached = getattr(request.state, "principal", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    principal = None
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            payload = decode_jwt(token)
        except JWTError:
            payload = None
        if payload and payload.get("sub"):
            principal = Principal(
                user_id=str(payload["sub"]),
                tenant_id=str(payload["tid"]) if payload.get("tid") else None,
                role=payload.get("role"),
            )

    request.state.principal = principal
    return principal


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def route_path(request: Request) -> str:
    """The matched path template (``/v1/users/{user_id}``), else the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


# ── Request rewriting ────────────────────────────────────────

def rebuild_request(
    request: Request,
    *,
    query: dict[str, Any] | None = None,
    body: bytes | None = None,
) -> Request:
    """Return a copy of ``request`` with a new query string and/or body.

    ``body`` must be passed whenever the original body has already been read,
    since the endpoint can no longer receive it from the socket.
    """
    scope = dict(request.scope)
    if query is not None:
        scope["query_string"] = urlencode(query, doseq=True).encode("latin-1")
    if body is None:
        return Request(scope, receive=request.receive)

    headers = [(k, v) for k, v in scope["headers"] if k != b"content-length"]
    headers.append((b"content-length", str(len(body)).encode("latin-1")))
    scope["headers"] = headers
    sent = False

    async def receive() -> Message:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive=receive)


def is_json(request: Request) -> bool:
    return "json" in request.headers.get("content-type", "")


def parse_json(raw: bytes) -> Any:
    """Decode a JSON body, or ``None`` when it is empty or malformed."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


# ── Composition ──────────────────────────────────────────────

class Pipeline:
    """Ordered stages wrapped around an endpoint."""

    def __init__(self, stages: Sequence[Stage]) -> None:
        self.stages = tuple(stages)

    async def run(self, request: Request, policy: RoutePolicy, endpoint: CallNext) -> Response:
        async def dispatch(index: int, current: Request) -> Response:
            if index == len(self.stages):
                return await endpoint(current)
            stage = self.stages[index]

            async def call_next(next_request: Request) -> Response:
                return await dispatch(index + 1, next_request)

            return await stage(current, call_next, policy)

        return await dispatch(0, request)
