"""Liveness, readiness and version endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from app.services.errors import ProviderError

router = APIRouter()

API_VERSION = "1.0.0"
STARTED_AT = datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """GET /api/health and /api/ready response."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(description="'ok' or 'ready'")
    version: str = Field(description="Semver MAJOR.MINOR.PATCH")
    timestamp: str = Field(description="ISO8601 UTC")
    uptime_seconds: int = Field(ge=0)
    store: str = Field(description="Experiment store backend class")
    provider_configured: bool
    scheduler_queue_length: Optional[int] = None


def _provider_configured(provider) -> bool:
    if provider is None:
        return False
    try:
        provider.ensure_configured()
    except ProviderError:
        return False
    return True


def _payload(status: str, request: Request) -> HealthResponse:
    state = request.app.state
    now = datetime.now(timezone.utc)
    store = getattr(state, "experiment_store", None)
    scheduler = getattr(state, "scheduler", None)
    return HealthResponse(
        status=status,
        version=API_VERSION,
        timestamp=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        uptime_seconds=max(0, int((now - STARTED_AT).total_seconds())),
        store=type(store).__name__ if store is not None else "none",
        provider_configured=_provider_configured(getattr(state, "provider", None)),
        scheduler_queue_length=scheduler.status().queue_length if scheduler is not None else None,
    )


@router.get("/version")
async def version():
    return {"version": API_VERSION}


@router.get("/ready", response_model=HealthResponse)
async def ready(request: Request):
    """503 until a store and a scheduler are wired on app.state."""
    state = request.app.state
    if getattr(state, "experiment_store", None) is None or getattr(state, "scheduler", None) is None:
        raise HTTPException(status_code=503, detail="not ready")
    return _payload("ready", request)


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    return _payload("ok", request)
