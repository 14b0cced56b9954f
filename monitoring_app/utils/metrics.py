# =============================================
# File: monitoring_app/utils/metrics.py
# Purpose: In-process counters, gauges & histograms behind /metrics
# =============================================
from __future__ import annotations
import math
import re
import threading
from bisect import bisect_left
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

COUNTER = "counter"
GAUGE = "gauge"
HISTOGRAM = "histogram"
KINDS = (COUNTER, GAUGE, HISTOGRAM)

# Latency buckets in seconds; +Inf is always implicit
DEFAULT_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Label values in a fixed order (the descriptor's label_names order)
LabelKey = Tuple[str, ...]


class MetricsError(Exception):
    """Base class for metric registry errors."""


class DuplicateMetricName(MetricsError):
    """A metric with this name is already registered."""


class InvalidMetricName(MetricsError, ValueError):
    """Metric or label name does not fit the exposition grammar."""


class InvalidLabelSet(MetricsError, ValueError):
    """Supplied label keys differ from the declared label names."""


class NegativeDelta(MetricsError, ValueError):
    """Counters can only go up."""


@dataclass(frozen=True)
class MetricDescriptor:
    """Immutable identity of a metric: name, help text, kind and label schema."""

    name: str
    help: str
    kind: str
    label_names: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "label_names", tuple(self.label_names))
        if self.kind not in KINDS:
            raise ValueError(f"unknown metric kind: {self.kind!r}")
        if not _METRIC_NAME_RE.match(self.name or ""):
            raise InvalidMetricName(f"invalid metric name: {self.name!r}")
        seen = set()
        for label in self.label_names:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise InvalidMetricName(f"invalid label name {label!r} on {self.name}")
            if self.kind == HISTOGRAM and label == "le":
                raise InvalidMetricName(f"'le' is reserved on histogram {self.name}")
            if label in seen:
                raise InvalidMetricName(f"duplicate label name {label!r} on {self.name}")
            seen.add(label)

    def label_key(self, labels: Optional[Mapping[str, Any]]) -> LabelKey:
        """Validate a label mapping and return its values in declared order."""
        labels = labels or {}
        if len(labels) != len(self.label_names) or set(labels) != set(self.label_names):
            raise InvalidLabelSet(
                f"{self.name} expects labels {list(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in self.label_names)


@dataclass(frozen=True)
class HistogramState:
    bounds: Tuple[float, ...]
    bucket_counts: Tuple[int, ...]  # cumulative, last entry is +Inf == count
    sum: float
    count: int


@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time view of one metric: descriptor plus its series sorted by label values."""

    descriptor: MetricDescriptor
    series: Tuple[Tuple[LabelKey, Any], ...]

    def value(self, labels: Optional[Mapping[str, Any]] = None) -> Any:
        key = self.descriptor.label_key(labels)
        for k, v in self.series:
            if k == key:
                return v
        return None


class _Series:
    __slots__ = ("lock",)

    def __init__(self) -> None:
        self.lock = threading.Lock()


class _ValueSeries(_Series):
    __slots__ = ("value",)

    def __init__(self) -> None:
        super().__init__()
        self.value: float = 0

    def read(self) -> float:
        with self.lock:
            return self.value


class _HistogramSeries(_Series):
    __slots__ = ("counts", "sum", "count")

    def __init__(self, n_bounds: int) -> None:
        super().__init__()
        self.counts: List[int] = [0] * n_bounds
        self.sum: float = 0.0
        self.count: int = 0

    def read(self, bounds: Tuple[float, ...]) -> HistogramState:
        with self.lock:
            return HistogramState(bounds, tuple(self.counts) + (self.count,), self.sum, self.count)


class Metric:
    """Common per-label-set bookkeeping; subclasses define the series type."""

    def __init__(self, descriptor: MetricDescriptor) -> None:
        self.descriptor = descriptor
        self._lock = threading.Lock()
        self._series: Dict[LabelKey, _Series] = {}
        if not descriptor.label_names:
            # label-less metrics expose a zero sample from the start
            self._series[()] = self._new_series()

    @property
    def name(self) -> str:
        return self.descriptor.name

    def _new_series(self) -> _Series:
        raise NotImplementedError

    def _get_or_create(self, key: LabelKey) -> _Series:
        series = self._series.get(key)
        if series is None:
            with self._lock:
                series = self._series.get(key)
                if series is None:
                    series = self._new_series()
                    self._series[key] = series
        return series

    def _items(self) -> List[Tuple[LabelKey, _Series]]:
        with self._lock:
            return sorted(self._series.items(), key=lambda kv: kv[0])

    def labels(self, **labels: Any) -> "BoundMetric":
        """Return a child bound to one validated label-set."""
        return BoundMetric(self, labels)

    def snapshot(self) -> MetricSnapshot:
        return MetricSnapshot(
            self.descriptor,
            tuple((key, self._read(series)) for key, series in self._items()),
        )

    def _read(self, series: _Series) -> Any:
        return series.read()  # type: ignore[attr-defined]


class Counter(Metric):
    """Monotonically non-decreasing total per label-set."""

    def _new_series(self) -> _ValueSeries:
        return _ValueSeries()

    def increment(self, labels: Optional[Mapping[str, Any]] = None, delta: float = 1) -> None:
        key = self.descriptor.label_key(labels)
        if not delta >= 0:
            raise NegativeDelta(f"{self.name}: counter increment must be >= 0, got {delta}")
        series = self._get_or_create(key)
        with series.lock:
            series.value += delta

    inc = increment

    def value(self, labels: Optional[Mapping[str, Any]] = None) -> float:
        series = self._series.get(self.descriptor.label_key(labels))
        return series.read() if series is not None else 0


class Gauge(Metric):
    """Value per label-set that can go up and down."""

    def _new_series(self) -> _ValueSeries:
        return _ValueSeries()

    def set(self, labels: Optional[Mapping[str, Any]], value: float) -> None:
        series = self._get_or_create(self.descriptor.label_key(labels))
        with series.lock:
            series.value = value

    def inc(self, labels: Optional[Mapping[str, Any]] = None, delta: float = 1) -> None:
        series = self._get_or_create(self.descriptor.label_key(labels))
        with series.lock:
            series.value += delta

    def dec(self, labels: Optional[Mapping[str, Any]] = None, delta: float = 1) -> None:
        self.inc(labels, -delta)

    def value(self, labels: Optional[Mapping[str, Any]] = None) -> float:
        series = self._series.get(self.descriptor.label_key(labels))
        return series.read() if series is not None else 0


def normalize_buckets(buckets: Optional[Iterable[float]]) -> Tuple[float, ...]:
    bounds = [float(b) for b in (DEFAULT_BUCKETS if buckets is None else buckets)]
    if bounds and bounds[-1] == math.inf:
        bounds.pop()
    if not bounds:
        raise ValueError("histogram needs at least one finite bucket bound")
    for i, b in enumerate(bounds):
        if not math.isfinite(b):
            raise ValueError(f"bucket bounds must be finite, got {b}")
        if i and b <= bounds[i - 1]:
            raise ValueError(f"bucket bounds must be strictly increasing: {bounds}")
    return tuple(bounds)


class Histogram(Metric):
    """Distribution per label-set over fixed cumulative buckets, with running sum and count."""

    def __init__(self, descriptor: MetricDescriptor, buckets: Optional[Sequence[float]] = None) -> None:
        self.bounds = normalize_buckets(buckets)
        super().__init__(descriptor)

    def _new_series(self) -> _HistogramSeries:
        return _HistogramSeries(len(self.bounds))

    def observe(self, labels: Optional[Mapping[str, Any]], value: float) -> None:
        key = self.descriptor.label_key(labels)
        value = float(value)
        # NaN only lands in +Inf
        start = len(self.bounds) if math.isnan(value) else bisect_left(self.bounds, value)
        series = self._get_or_create(key)
        with series.lock:
            for i in range(start, len(self.bounds)):
                series.counts[i] += 1
            series.sum += value
            series.count += 1

    def state(self, labels: Optional[Mapping[str, Any]] = None) -> Optional[HistogramState]:
        series = self._series.get(self.descriptor.label_key(labels))
        return series.read(self.bounds) if series is not None else None

    def _read(self, series: _Series) -> HistogramState:
        return series.read(self.bounds)  # type: ignore[attr-defined]


class BoundMetric:
    """A metric with its label-set already validated and fixed."""

    def __init__(self, metric: Metric, labels: Mapping[str, Any]) -> None:
        metric.descriptor.label_key(labels)
        self._metric = metric
        self._labels = dict(labels)

    def inc(self, delta: float = 1) -> None:
        self._metric.inc(self._labels, delta)  # type: ignore[attr-defined]

    def dec(self, delta: float = 1) -> None:
        self._metric.dec(self._labels, delta)  # type: ignore[attr-defined]

    def set(self, value: float) -> None:
        self._metric.set(self._labels, value)  # type: ignore[attr-defined]

    def observe(self, value: float) -> None:
        self._metric.observe(self._labels, value)  # type: ignore[attr-defined]

    def value(self) -> Any:
        if isinstance(self._metric, Histogram):
            return self._metric.state(self._labels)
        return self._metric.value(self._labels)  # type: ignore[attr-defined]


class MetricRegistry:
    """Owns the registered metrics, keyed by unique name, in registration order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: Dict[str, Metric] = {}

    def register(self, descriptor: MetricDescriptor, buckets: Optional[Sequence[float]] = None) -> Metric:
        """Register a metric and return its handle. Raises DuplicateMetricName on a name clash."""
        if descriptor.kind == HISTOGRAM:
            metric: Metric = Histogram(descriptor, buckets)
        elif buckets is not None:
            raise ValueError(f"buckets only apply to histograms, not {descriptor.kind}")
        elif descriptor.kind == COUNTER:
            metric = Counter(descriptor)
        else:
            metric = Gauge(descriptor)
        with self._lock:
            if descriptor.name in self._metrics:
                raise DuplicateMetricName(f"metric already registered: {descriptor.name}")
            self._metrics[descriptor.name] = metric
        return metric

    def counter(self, name: str, help: str, label_names: Sequence[str] = ()) -> Counter:
        return self.register(MetricDescriptor(name, help, COUNTER, tuple(label_names)))  # type: ignore[return-value]

    def gauge(self, name: str, help: str, label_names: Sequence[str] = ()) -> Gauge:
        return self.register(MetricDescriptor(name, help, GAUGE, tuple(label_names)))  # type: ignore[return-value]

    def histogram(
        self,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        return self.register(MetricDescriptor(name, help, HISTOGRAM, tuple(label_names)), buckets)  # type: ignore[return-value]

    def get(self, name: str) -> Optional[Metric]:
        with self._lock:
            return self._metrics.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._metrics

    def names(self) -> List[str]:
        with self._lock:
            return list(self._metrics)

    def snapshot(self) -> List[MetricSnapshot]:
        # registry lock only covers copying the metric list; each metric is read on its own
        with self._lock:
            metrics = list(self._metrics.values())
        return [m.snapshot() for m in metrics]
