"""Route class that runs the request pipeline around each endpoint.

Per-route behaviour comes from an explicit ``RoutePolicy`` table resolved
onto the routes once, at application start-up.
"""

import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any

from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.requests import Request
from starlette.responses import Response

from app.pipeline import DEFAULT_POLICY, Pipeline, RoutePolicy

logger = logging.getLogger(__name__)

PolicyKey = tuple[str, str]


class PipelineRoute(APIRoute):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # method -> policy, filled by resolve_route_policies
        self.policies: dict[str, RoutePolicy] = {}

    def policy_for(self, method: str) -> RoutePolicy:
        return self.policies.get(method, DEFAULT_POLICY)

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        endpoint = super().get_route_handler()

        async def handler(request: Request) -> Response:
            pipeline: Pipeline | None = getattr(request.app.state, "pipeline", None)
            if pipeline is None:
                return await endpoint(request)
            return await pipeline.run(request, self.policy_for(request.method), endpoint)

        return handler


def resolve_route_policies(app: FastAPI, table: Mapping[PolicyKey, RoutePolicy]) -> None:
    """Attach each ``(METHOD, path template)`` entry to its route.

    Raises ``RuntimeError`` for entries that name no ``PipelineRoute`` so a
    typo in the table fails start-up instead of silently dropping a policy.
    """
    routes: dict[PolicyKey, PipelineRoute] = {}
    for route in app.routes:
        if isinstance(route, PipelineRoute):
            for method in route.methods:
                routes[(method, route.path)] = route

    unknown = [key for key in table if key not in routes]
    if unknown:
        raise RuntimeError(f"Route policies reference unknown routes: {unknown}")

    for (method, path), policy in table.items():
        routes[(method, path)].policies[method] = policy
    logger.info("Resolved %d route policies", len(table))
