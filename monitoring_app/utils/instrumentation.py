# =============================================
# File: monitoring_app/utils/instrumentation.py
# Purpose: Per-request metric updates (count, duration, in-flight)
# =============================================
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from loguru import logger
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from monitoring_app.utils import slog
from monitoring_app.utils.metrics import (
    Counter,
    DuplicateMetricName,
    Gauge,
    Histogram,
    MetricRegistry,
    normalize_buckets,
)
from monitoring_app.utils.timing import now

UNMATCHED_ROUTE = "<unmatched>"
SERVER_ERROR_STATUS = 500
CLIENT_CLOSED_STATUS = 499  # request aborted before the response finished


def resolve_route(scope: Mapping[str, Any]) -> str:
    """Matched route template (e.g. ``/items/{item_id}``), never the raw path."""
    route = scope.get("route")
    path = getattr(route, "path", None)
    return path if path else UNMATCHED_ROUTE


@dataclass
class HttpMetrics:
    requests_total: Counter
    request_duration: Histogram
    requests_in_progress: Gauge

    NAMES = ("http_requests_total", "http_request_duration_seconds", "http_requests_in_progress")

    @classmethod
    def register(cls, registry: MetricRegistry, buckets: Optional[Sequence[float]] = None) -> "HttpMetrics":
        """Register all three metrics or none of them."""
        taken = [name for name in cls.NAMES if name in registry]
        if taken:
            raise DuplicateMetricName(f"metrics already registered: {', '.join(taken)}")
        bounds = normalize_buckets(buckets)
        return cls(
            requests_total=registry.counter(
                "http_requests_total", "total http requests", ("method", "route", "status")
            ),
            request_duration=registry.histogram(
                "http_request_duration_seconds", "request duration in seconds", ("method", "route"), bounds
            ),
            requests_in_progress=registry.gauge(
                "http_requests_in_progress", "http requests currently being handled", ("method",)
            ),
        )


@dataclass
class RequestContext:
    method: str
    path: str
    start: float
    request_id: str = field(default_factory=slog.new_request_id)
    client_ip: Optional[str] = None
    route: str = UNMATCHED_ROUTE
    status: Optional[int] = None
    duration_s: Optional[float] = None
    completed: bool = False


class InstrumentationHook:
    """Started -> Completed per request; completion updates metrics exactly once."""

    def __init__(self, metrics: HttpMetrics, clock: Callable[[], float] = now) -> None:
        self.metrics = metrics
        self._clock = clock

    def start(self, method: str, path: str = "", client_ip: Optional[str] = None) -> RequestContext:
        ctx = RequestContext(method=method.upper(), path=path, start=self._clock(), client_ip=client_ip)
        try:
            self.metrics.requests_in_progress.inc({"method": ctx.method})
        except Exception:
            logger.exception("[instrumentation] failed to mark request in progress")
        return ctx

    def complete(self, ctx: RequestContext, status: Optional[int] = None, route: Optional[str] = None) -> bool:
        """Finalize ``ctx``. Returns False if it was already completed; never raises."""
        if ctx.completed:
            return False
        ctx.completed = True
        if status is not None:
            ctx.status = status
        if route is not None:
            ctx.route = route
        if ctx.status is None:
            ctx.status = CLIENT_CLOSED_STATUS
        ctx.duration_s = max(0.0, self._clock() - ctx.start)
        try:
            self.metrics.requests_in_progress.dec({"method": ctx.method})
            self.metrics.requests_total.increment(
                {"method": ctx.method, "route": ctx.route, "status": ctx.status}
            )
            self.metrics.request_duration.observe({"method": ctx.method, "route": ctx.route}, ctx.duration_s)
            slog.finalize_request_log(
                request_id=ctx.request_id,
                method=ctx.method,
                path=ctx.path,
                route=ctx.route,
                status=ctx.status,
                duration_s=ctx.duration_s,
                client_ip=ctx.client_ip,
            )
        except Exception:
            logger.exception(f"[instrumentation] failed to record {ctx.method} {ctx.route}")
        return True

    @contextmanager
    def track(self, method: str, path: str = "", client_ip: Optional[str] = None) -> Iterator[RequestContext]:
        """Scope one request; completion runs on every exit path, including errors and cancellation.

        A failure before the response finished overrides any status already
        sent in the headers.
        """
        ctx = self.start(method, path, client_ip)
        try:
            yield ctx
        except Exception:
            if not ctx.completed:
                ctx.status = SERVER_ERROR_STATUS
            raise
        except BaseException:
            if not ctx.completed:
                ctx.status = CLIENT_CLOSED_STATUS
            raise
        finally:
            self.complete(ctx)


class MetricsMiddleware:
    """ASGI middleware completing the request once the last body chunk is sent."""

    def __init__(self, app: ASGIApp, hook: InstrumentationHook) -> None:
        self.app = app
        self.hook = hook

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        with self.hook.track(scope.get("method", ""), scope.get("path", ""), client[0] if client else None) as ctx:

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    ctx.status = message["status"]
                    MutableHeaders(scope=message).append("X-Request-ID", ctx.request_id)
                await send(message)
                if message["type"] == "http.response.body" and not message.get("more_body", False):
                    # routing fills scope["route"] on the shared scope dict
                    self.hook.complete(ctx, route=resolve_route(scope))

            try:
                await self.app(scope, receive, send_wrapper)
            finally:
                if not ctx.completed:
                    ctx.route = resolve_route(scope)
