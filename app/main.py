"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import Session
from app.api.policies import ROUTE_POLICIES
from app.api.routing import resolve_route_policies
from app.api.v1 import v1_router
from app.core.cache import CacheService, build_cache_backend
from app.core.config import get_settings
from app.core.database import init_db, ping
from app.core.logging import setup_logging
from app.core.metrics import MetricsRegistry
from app.pipeline import build_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist
    await init_db()
    yield
    await app.state.cache.close()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="SaaS Platform",
        version="0.1.0",
        description="Multi-tenant SaaS backend: tenants, RBAC, audit trail",
        lifespan=lifespan,
    )

    # ── Shared services ──────────────────────────────────────
    app.state.cache = CacheService(build_cache_backend(settings))
    app.state.metrics = MetricsRegistry()
    app.state.pipeline = build_pipeline(app.state.cache, app.state.metrics)

    # ── CORS ─────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.allowed_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── API routes ───────────────────────────────────────────
    app.include_router(v1_router)
    resolve_route_policies(app, ROUTE_POLICIES)

    @app.get("/health", tags=["system"])
    async def health_check(session: Session) -> JSONResponse:
        try:
            await ping(session)
        except SQLAlchemyError:
            logger.exception("Health check: database unreachable")
            return JSONResponse(
                status_code=503, content={"status": "error", "database": "unreachable"}
            )
        return JSONResponse(content={"status": "ok", "database": "ok"})

    @app.get("/metrics", tags=["system"], response_class=Response)
    async def metrics() -> Response:
        return Response(app.state.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    logger.info("Application configured with %s cache backend", settings.cache_backend)
    return app


app = create_app()
