# =============================================
# File: monitoring_app/config.py
# Purpose: Runtime settings read from the environment
# =============================================
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    log_file: Optional[str] = None
    process_stats_ttl_seconds: float = 1.0
    slow_endpoint_delay_seconds: float = 2.0
    http_duration_buckets: Optional[Tuple[float, ...]] = None


def _parse_buckets(raw: str) -> Optional[Tuple[float, ...]]:
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        return None
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise ValueError(f"HTTP_DURATION_BUCKETS must be comma-separated numbers, got {raw!r}") from None


def get_settings() -> Settings:
    """Read settings at call time so tests/env overrides take effect."""
    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE") or None,
        process_stats_ttl_seconds=float(os.getenv("PROCESS_STATS_TTL_SECONDS", "1.0")),
        slow_endpoint_delay_seconds=float(os.getenv("SLOW_ENDPOINT_DELAY_SECONDS", "2.0")),
        http_duration_buckets=_parse_buckets(os.getenv("HTTP_DURATION_BUCKETS", "")),
    )
