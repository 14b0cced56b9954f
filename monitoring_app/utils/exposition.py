# =============================================
# File: monitoring_app/utils/exposition.py
# Purpose: Render metric snapshots in the Prometheus text format (0.0.4)
# =============================================
from __future__ import annotations
import math
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from monitoring_app.utils.metrics import HISTOGRAM, HistogramState, MetricSnapshot

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def format_value(value: float) -> str:
    """Integers as-is, floats in shortest round-trip form, no locale separators."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(value)


def escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _labels(pairs: Sequence[Tuple[str, str]]) -> str:
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{escape_label_value(v)}"' for k, v in pairs) + "}"


def _render_metric(m: MetricSnapshot, out: List[str]) -> None:
    d = m.descriptor
    out.append(f"# HELP {d.name} {escape_help(d.help)}")
    out.append(f"# TYPE {d.name} {d.kind}")
    for key, value in m.series:
        pairs = list(zip(d.label_names, key))
        if d.kind == HISTOGRAM:
            _render_histogram(d.name, pairs, value, out)
        else:
            out.append(f"{d.name}{_labels(pairs)} {format_value(value)}")


def _render_histogram(name: str, pairs: List[Tuple[str, str]], state: HistogramState, out: List[str]) -> None:
    for bound, cumulative in zip(state.bounds + (math.inf,), state.bucket_counts):
        le = pairs + [("le", format_value(bound))]
        out.append(f"{name}_bucket{_labels(le)} {cumulative}")
    out.append(f"{name}_sum{_labels(pairs)} {format_value(state.sum)}")
    out.append(f"{name}_count{_labels(pairs)} {state.count}")


def render(
    snapshot: Iterable[MetricSnapshot],
    process_stats: Optional[Mapping[str, MetricSnapshot]] = None,
) -> str:
    """Serialize registry metrics (registration order) followed by process statistics."""
    out: List[str] = []
    seen = set()
    for m in snapshot:
        seen.add(m.descriptor.name)
        _render_metric(m, out)
    for name, m in (process_stats or {}).items():
        if name in seen:
            logger.debug(f"[exposition] process stat {name} shadowed by a registered metric")
            continue
        _render_metric(m, out)
    return "\n".join(out) + "\n" if out else ""
