"""Ordered request-processing stages wrapped around every API route."""

from app.core.cache import CacheService
from app.core.metrics import MetricsRegistry
from app.pipeline.base import Pipeline, Principal, request_principal
from app.pipeline.cache import CacheStage
from app.pipeline.metrics import MetricsStage
from app.pipeline.options import (
    DEFAULT_POLICY,
    CacheInvalidateOptions,
    CacheOptions,
    MetricsOptions,
    RateLimitOptions,
    RoutePolicy,
    TenantOptions,
)
from app.pipeline.rate_limit import RateLimitStage
from app.pipeline.tenant import TenantStage


def build_pipeline(cache: CacheService, metrics: MetricsRegistry) -> Pipeline:
    """metrics -> rate limit -> tenant -> cache -> endpoint."""
    return Pipeline(
        [
            MetricsStage(metrics),
            RateLimitStage(cache.backend),
            TenantStage(metrics),
            CacheStage(cache, metrics),
        ]
    )


__all__ = [
    "DEFAULT_POLICY",
    "CacheInvalidateOptions",
    "CacheOptions",
    "CacheStage",
    "MetricsOptions",
    "MetricsStage",
    "Pipeline",
    "Principal",
    "RateLimitOptions",
    "RateLimitStage",
    "RoutePolicy",
    "TenantOptions",
    "TenantStage",
    "build_pipeline",
    "request_principal",
]
