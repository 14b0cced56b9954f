# =============================================
# File: tests/test_instrumentation.py
# Purpose: Request lifecycle hook: exactly-once completion on every exit path
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import asyncio

import pytest

from monitoring_app.utils.instrumentation import (
    CLIENT_CLOSED_STATUS,
    UNMATCHED_ROUTE,
    HttpMetrics,
    InstrumentationHook,
    resolve_route,
)
from monitoring_app.utils.metrics import DuplicateMetricName, MetricRegistry


class _Clock:
    def __init__(self):
        self.t = 10.0

    def __call__(self):
        return self.t


def _hook():
    reg = MetricRegistry()
    metrics = HttpMetrics.register(reg, buckets=(0.1, 1.0))
    clock = _Clock()
    return InstrumentationHook(metrics, clock=clock), metrics, clock


def test_track_records_count_and_duration():
    hook, m, clock = _hook()
    with hook.track("get", "/items/7") as ctx:
        assert m.requests_in_progress.value({"method": "GET"}) == 1
        clock.t += 0.25
        ctx.route = "/items/{item_id}"
        ctx.status = 200
    assert ctx.completed and ctx.duration_s == pytest.approx(0.25)
    assert m.requests_total.value({"method": "GET", "route": "/items/{item_id}", "status": "200"}) == 1
    state = m.request_duration.state({"method": "GET", "route": "/items/{item_id}"})
    assert state.count == 1
    assert state.bucket_counts == (0, 1, 1)
    assert state.sum == pytest.approx(0.25)
    assert m.requests_in_progress.value({"method": "GET"}) == 0


def test_handler_error_counts_as_500():
    hook, m, _ = _hook()
    with pytest.raises(RuntimeError):
        with hook.track("GET") as ctx:
            ctx.route = "/boom"
            raise RuntimeError("handler failed")
    assert m.requests_total.value({"method": "GET", "route": "/boom", "status": "500"}) == 1
    assert m.request_duration.state({"method": "GET", "route": "/boom"}).count == 1


def test_cancelled_request_still_completes():
    hook, m, _ = _hook()
    with pytest.raises(asyncio.CancelledError):
        with hook.track("GET") as ctx:
            ctx.route = "/slow"
            raise asyncio.CancelledError()
    assert ctx.status == CLIENT_CLOSED_STATUS
    assert m.requests_total.value({"method": "GET", "route": "/slow", "status": "499"}) == 1
    assert m.requests_in_progress.value({"method": "GET"}) == 0


def test_complete_fires_once():
    hook, m, _ = _hook()
    ctx = hook.start("POST", "/x")
    assert hook.complete(ctx, status=201, route="/x") is True
    assert hook.complete(ctx, status=500, route="/x") is False
    assert m.requests_total.value({"method": "POST", "route": "/x", "status": "201"}) == 1
    assert m.requests_total.value({"method": "POST", "route": "/x", "status": "500"}) == 0
    assert ctx.route == "/x"


def test_default_route_is_unmatched():
    hook, m, _ = _hook()
    ctx = hook.start("GET", "/nope/123")
    hook.complete(ctx, status=404)
    assert m.requests_total.value({"method": "GET", "route": UNMATCHED_ROUTE, "status": "404"}) == 1


def test_metric_failures_are_swallowed(monkeypatch):
    hook, m, _ = _hook()

    def _broken(*args, **kwargs):
        raise RuntimeError("metric store broken")

    monkeypatch.setattr(m.requests_total, "increment", _broken)
    ctx = hook.start("GET", "/")
    assert hook.complete(ctx, status=200, route="/") is True
    assert ctx.completed


def test_resolve_route():
    class _Route:
        path = "/items/{item_id}"

    assert resolve_route({"route": _Route()}) == "/items/{item_id}"
    assert resolve_route({}) == UNMATCHED_ROUTE


def test_http_metrics_register_once():
    reg = MetricRegistry()
    HttpMetrics.register(reg)
    with pytest.raises(DuplicateMetricName):
        HttpMetrics.register(reg)
    assert reg.names() == ["http_requests_total", "http_request_duration_seconds", "http_requests_in_progress"]


def test_http_metrics_registration_is_all_or_nothing():
    reg = MetricRegistry()
    reg.gauge("http_requests_in_progress", "taken elsewhere")
    with pytest.raises(DuplicateMetricName):
        HttpMetrics.register(reg)
    assert reg.names() == ["http_requests_in_progress"]

    empty = MetricRegistry()
    with pytest.raises(ValueError):
        HttpMetrics.register(empty, buckets=(1.0, 0.5))
    assert empty.names() == []


def test_failure_after_headers_counts_as_500():
    hook, m, _ = _hook()
    with pytest.raises(RuntimeError):
        with hook.track("GET") as ctx:
            ctx.route = "/stream"
            ctx.status = 200  # headers already sent
            raise RuntimeError("body generator failed")
    assert m.requests_total.value({"method": "GET", "route": "/stream", "status": "500"}) == 1
    assert m.requests_total.value({"method": "GET", "route": "/stream", "status": "200"}) == 0


def test_error_after_completion_keeps_status():
    hook, m, _ = _hook()
    with pytest.raises(RuntimeError):
        with hook.track("GET") as ctx:
            hook.complete(ctx, status=200, route="/")
            raise RuntimeError("late failure")
    assert m.requests_total.value({"method": "GET", "route": "/", "status": "200"}) == 1
    assert m.requests_total.value({"method": "GET", "route": "/", "status": "500"}) == 0
