# =============================================
# File: monitoring_app/cli/serve.py
# Purpose: CLI entrypoint to run the instrumented HTTP service.
# Usage:
#   python -m monitoring_app.cli.serve --port 3001
# =============================================
from __future__ import annotations
import argparse

import uvicorn
from loguru import logger

from monitoring_app.config import get_settings
from monitoring_app.utils.logging import configure_logging


def main(argv=None):
    settings = get_settings()
    ap = argparse.ArgumentParser(description="Run the instrumented HTTP service.")
    ap.add_argument("--host", default=settings.host, help=f"Bind address (default: {settings.host})")
    ap.add_argument("--port", type=int, default=settings.port, help=f"Listen port (default: {settings.port})")
    ap.add_argument("--log-level", default=settings.log_level, help=f"Log level (default: {settings.log_level})")
    args = ap.parse_args(argv)

    configure_logging(settings.log_file, args.log_level)
    logger.info(f"app running on port {args.port}")
    logger.info(f"metrics available at http://localhost:{args.port}/metrics")
    uvicorn.run("monitoring_app.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())

if __name__ == "__main__":
    main()
