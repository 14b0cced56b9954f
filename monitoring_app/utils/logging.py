# =============================================
# File: monitoring_app/utils/logging.py
# Purpose: Logging configuration (loguru stderr level + optional file sink)
# =============================================
from __future__ import annotations
import sys
from typing import Optional, TextIO

from loguru import logger

_stderr_sink_id: Optional[int] = 0  # loguru's default handler
_file_sink_id: Optional[int] = None


def configure_logging(log_file: Optional[str], level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Apply ``level`` to the console sink and add a rotating file sink when LOG_FILE is set.

    Calling again replaces both sinks.
    """
    global _stderr_sink_id, _file_sink_id
    level = level.upper()
    if _stderr_sink_id is not None:
        try:
            logger.remove(_stderr_sink_id)
        except ValueError:
            # already removed elsewhere
            pass
    _stderr_sink_id = logger.add(stream or sys.stderr, level=level)
    if _file_sink_id is not None:
        logger.remove(_file_sink_id)
        _file_sink_id = None
    if log_file:
        _file_sink_id = logger.add(log_file, rotation="10 MB", level=level)
