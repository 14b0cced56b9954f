# =============================================
# File: monitoring_app/routers/metrics.py
# Purpose: Expose the metric registry in the Prometheus text format
# =============================================
from __future__ import annotations
from fastapi import APIRouter, Depends, Request, Response

from monitoring_app.utils.exposition import CONTENT_TYPE, render
from monitoring_app.utils.metrics import MetricRegistry
from monitoring_app.utils.process_stats import ProcessStatsCollector

router = APIRouter(tags=["metrics"])


def get_registry(request: Request) -> MetricRegistry:
    return request.app.state.registry


def get_process_stats(request: Request) -> ProcessStatsCollector:
    return request.app.state.process_stats


@router.get("/metrics", include_in_schema=False)
def get_metrics(
    registry: MetricRegistry = Depends(get_registry),
    collector: ProcessStatsCollector = Depends(get_process_stats),
) -> Response:
    """Return current metric state for scraping."""
    return Response(content=render(registry.snapshot(), collector.sample()), media_type=CONTENT_TYPE)
