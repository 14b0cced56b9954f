# =============================================
# File: monitoring_app/utils/slog.py
# Purpose: Minimal structured logging (JSON) for completed requests
# =============================================
from __future__ import annotations
import json
import logging
import os
import uuid
from typing import Any

_LOGGER_NAME = "monitoring_app"
_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_logger = logging.getLogger(_LOGGER_NAME)
if not _logger.handlers:
    _logger.setLevel(getattr(logging, _LEVEL, logging.INFO))
    _handler = logging.StreamHandler()
    # Emit the message as-is; we pre-format JSON strings ourselves
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(_handler)
    _logger.propagate = True  # allow pytest caplog to capture

def new_request_id() -> str:
    return uuid.uuid4().hex

def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    rec = {"event": event}
    rec.update(fields)
    _logger.log(level, json.dumps(rec, ensure_ascii=False))

def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    route: str,
    status: int,
    duration_s: float,
    client_ip: str | None,
) -> None:
    log_event(
        "request.completed",
        request_id=request_id,
        method=method,
        path=path,
        route=route,
        status=status,
        duration_s=round(duration_s, 6),
        client_ip=client_ip or "",
    )
