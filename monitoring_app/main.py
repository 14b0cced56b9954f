from __future__ import annotations
from typing import Optional

from fastapi import FastAPI
from loguru import logger

from monitoring_app.config import Settings, get_settings
from monitoring_app.routers import demo, metrics
from monitoring_app.utils.instrumentation import HttpMetrics, InstrumentationHook, MetricsMiddleware
from monitoring_app.utils.metrics import MetricRegistry
from monitoring_app.utils.process_stats import ProcessStatsCollector
from monitoring_app.utils.timing import now


def create_app(registry: Optional[MetricRegistry] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the service with its own metric registry.

    Registration happens here, once, before any request is served; a registry
    that already holds the HTTP metrics fails with DuplicateMetricName.
    """
    settings = settings or get_settings()
    registry = registry if registry is not None else MetricRegistry()
    http_metrics = HttpMetrics.register(registry, buckets=settings.http_duration_buckets)

    app = FastAPI(
        title="Monitoring App",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.http_metrics = http_metrics
    app.state.instrumentation = InstrumentationHook(http_metrics)
    app.state.process_stats = ProcessStatsCollector(ttl_seconds=settings.process_stats_ttl_seconds)
    app.state.started_at = now()

    app.add_middleware(MetricsMiddleware, hook=app.state.instrumentation)
    app.include_router(demo.router)
    app.include_router(metrics.router)
    logger.debug(f"[main] registered metrics: {registry.names()}")
    return app


app = create_app()
