# =============================================
# File: monitoring_app/routers/demo.py
# Purpose: Sample endpoints that generate traffic worth measuring
# =============================================
from __future__ import annotations
import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from monitoring_app.utils.timing import elapsed_since

router = APIRouter(tags=["demo"])


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    uptime: float


@router.get("/", response_model=MessageResponse)
def root() -> MessageResponse:
    return MessageResponse(message="hello from monitoring app")


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    return HealthResponse(status="healthy", uptime=elapsed_since(request.app.state.started_at))


@router.get("/slow", response_model=MessageResponse)
async def slow(request: Request) -> MessageResponse:
    # simulate slow endpoint
    delay = request.app.state.settings.slow_endpoint_delay_seconds
    await asyncio.sleep(delay)
    return MessageResponse(message=f"this took {delay:g} seconds")


@router.get("/error")
def error() -> JSONResponse:
    # simulate error
    logger.error("ERROR: something went wrong")
    return JSONResponse(status_code=500, content={"error": "internal server error"})
