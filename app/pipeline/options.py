"""Per-route configuration consumed by the pipeline stages.

A stage whose option is ``None`` on a route's policy leaves that route alone.
"""

from dataclasses import dataclass, field

from app.core.cache import DEFAULT_TTL


@dataclass(frozen=True)
class CacheOptions:
    ttl: int = DEFAULT_TTL
    # Overrides the route path as the first key segment
    key: str | None = None
    include_tenant: bool = True
    include_user: bool = False
    include_params: bool = True
    include_query: bool = True


@dataclass(frozen=True)
class CacheInvalidateOptions:
    patterns: tuple[str, ...] = ()
    keys: tuple[str, ...] = ()
    tenant: bool = True
    user: bool = False


@dataclass(frozen=True)
class RateLimitOptions:
    limit: int
    window: int = 60
    message: str = "Too many requests"
    per_user: bool = True
    per_tenant: bool = True


@dataclass(frozen=True)
class TenantOptions:
    isolation: bool = True
    validate: bool = True
    allow_cross_tenant: bool = False
    tenant_field: str = "tenantId"
    auto_filter: bool = True
    log_access: bool = True
    collect_metrics: bool = True


@dataclass(frozen=True)
class MetricsOptions:
    # Route label; defaults to the path template
    name: str | None = None
    include_tenant: bool = True
    track_tenant_operations: bool = True
    collect_counter: bool = True
    collect_duration: bool = True


@dataclass(frozen=True)
class RoutePolicy:
    cache: CacheOptions | None = None
    invalidate: CacheInvalidateOptions | None = None
    rate_limit: RateLimitOptions | None = None
    tenant: TenantOptions | None = None
    metrics: MetricsOptions | None = field(default_factory=MetricsOptions)


# Routes missing from the policy table still get request metrics.
DEFAULT_POLICY = RoutePolicy()
