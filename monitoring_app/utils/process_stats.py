# =============================================
# File: monitoring_app/utils/process_stats.py
# Purpose: Sample process-level resource usage at scrape time
# =============================================
from __future__ import annotations
import gc
import platform
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psutil
from loguru import logger

from monitoring_app.utils.metrics import COUNTER, GAUGE, MetricDescriptor, MetricSnapshot
from monitoring_app.utils.timing import timer

Series = List[Tuple[Tuple[str, ...], float]]


class ProcessStatsCollector:
    """Reads CPU, memory, file descriptors, threads and GC stats for one process.

    Each statistic is read independently; one that the platform cannot provide
    is left out of the sample instead of failing the scrape. Results are cached
    for ``ttl_seconds`` (0 disables caching).
    """

    def __init__(
        self,
        ttl_seconds: float = 1.0,
        process: Optional[psutil.Process] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._process = process or psutil.Process()
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[Dict[str, MetricSnapshot]] = None
        self._cached_at = 0.0
        self._probes: Sequence[Tuple[str, str, str, Tuple[str, ...], Callable[[], Series]]] = (
            ("process_cpu_user_seconds_total", "Total user CPU time spent in seconds.", COUNTER, (), self._cpu_user),
            ("process_cpu_system_seconds_total", "Total system CPU time spent in seconds.", COUNTER, (), self._cpu_system),
            ("process_cpu_seconds_total", "Total user and system CPU time spent in seconds.", COUNTER, (), self._cpu_total),
            ("process_start_time_seconds", "Start time of the process since unix epoch in seconds.", GAUGE, (), self._start_time),
            ("process_uptime_seconds", "Seconds since the process started.", GAUGE, (), self._uptime),
            ("process_resident_memory_bytes", "Resident memory size in bytes.", GAUGE, (), self._rss),
            ("process_virtual_memory_bytes", "Virtual memory size in bytes.", GAUGE, (), self._vms),
            ("process_open_fds", "Number of open file descriptors.", GAUGE, (), self._open_fds),
            ("process_max_fds", "Maximum number of open file descriptors.", GAUGE, (), self._max_fds),
            ("process_threads", "Number of OS threads in the process.", GAUGE, (), self._threads),
            ("python_gc_collections_total", "Number of times this generation was collected.", COUNTER, ("generation",), self._gc_collections),
            ("python_gc_objects_collected_total", "Objects collected during gc.", COUNTER, ("generation",), self._gc_collected),
            ("python_info", "Python platform information.", GAUGE, ("implementation", "version"), self._python_info),
        )

    def sample(self) -> Dict[str, MetricSnapshot]:
        """Return process metric name -> snapshot, omitting unavailable statistics."""
        with self._lock:
            now = self._clock()
            if self._cached is not None and self.ttl_seconds > 0 and now - self._cached_at < self.ttl_seconds:
                return dict(self._cached)
            stats = self._collect()
            self._cached, self._cached_at = stats, now
            return dict(stats)

    def values(self) -> Dict[str, Any]:
        """Flat name -> value view of the label-less statistics."""
        return {
            name: m.series[0][1]
            for name, m in self.sample().items()
            if not m.descriptor.label_names and m.series
        }

    def _collect(self) -> Dict[str, MetricSnapshot]:
        out: Dict[str, MetricSnapshot] = {}
        with timer() as elapsed, self._process.oneshot():
            for name, help_text, kind, label_names, probe in self._probes:
                try:
                    series = probe()
                except Exception as e:
                    logger.debug(f"[process_stats] {name} unavailable: {e!r}")
                    continue
                out[name] = MetricSnapshot(
                    MetricDescriptor(name, help_text, kind, label_names),
                    tuple(series),
                )
        logger.debug(f"[process_stats] sampled {len(out)} stats in {elapsed():.4f}s")
        return out

    def _cpu_user(self) -> Series:
        return [((), self._process.cpu_times().user)]

    def _cpu_system(self) -> Series:
        return [((), self._process.cpu_times().system)]

    def _cpu_total(self) -> Series:
        t = self._process.cpu_times()
        return [((), t.user + t.system)]

    def _start_time(self) -> Series:
        return [((), self._process.create_time())]

    def _uptime(self) -> Series:
        return [((), max(0.0, time.time() - self._process.create_time()))]

    def _rss(self) -> Series:
        return [((), self._process.memory_info().rss)]

    def _vms(self) -> Series:
        return [((), self._process.memory_info().vms)]

    def _open_fds(self) -> Series:
        # num_fds() is POSIX only
        return [((), self._process.num_fds())]

    def _max_fds(self) -> Series:
        soft, _hard = self._process.rlimit(psutil.RLIMIT_NOFILE)
        return [((), float("inf") if soft == psutil.RLIM_INFINITY else soft)]

    def _threads(self) -> Series:
        return [((), self._process.num_threads())]

    def _gc_collections(self) -> Series:
        return [((str(gen),), stats["collections"]) for gen, stats in enumerate(gc.get_stats())]

    def _gc_collected(self) -> Series:
        return [((str(gen),), stats["collected"]) for gen, stats in enumerate(gc.get_stats())]

    def _python_info(self) -> Series:
        return [((platform.python_implementation(), platform.python_version()), 1)]
