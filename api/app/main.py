from __future__ import annotations

import logging
import math
import os
import time

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from app.adapters.experiment_store import InMemoryExperimentStore
from app.adapters.postgres_store import PostgresExperimentStore
from app.config import load_settings
from app.routers import experiments, health, llm
from app.services.provider_client import GeminiClient
from app.services.rate_scheduler import RateScheduler

settings = load_settings()

app = FastAPI(title="Parameter Sweep Lab API", version="1.0.0")

logger = logging.getLogger("sweeplab")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
_level = getattr(logging, settings.log_level, logging.INFO)
logger.setLevel(_level if isinstance(_level, int) else logging.INFO)

# Service modules log under "app.*"; route them through the same handler.
_app_logger = logging.getLogger("app")
if not _app_logger.handlers:
    for h in logger.handlers:
        _app_logger.addHandler(h)
_app_logger.setLevel(logger.level)
_app_logger.propagate = False
logger.propagate = False

request_logger = logging.getLogger("sweeplab.requests")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "1" if default else "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _slow_request_ms_threshold() -> float:
    raw = os.getenv("API_SLOW_REQUEST_MS", "1500").strip()
    try:
        return max(25.0, float(raw))
    except ValueError:
        return 1500.0


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.settings = settings

if settings.database_url:
    # Production: PostgreSQL (any SQLAlchemy URL works)
    app.state.experiment_store = PostgresExperimentStore(settings.database_url)
else:
    # Development/Testing: in-memory store with optional JSON persistence
    app.state.experiment_store = InMemoryExperimentStore(persist_path=settings.store_path or None)

# One scheduler per process: every experiment and one-off call shares the budget.
app.state.scheduler = RateScheduler(
    settings.max_requests_per_interval,
    settings.rate_interval_s,
    burst=settings.rate_burst,
    min_spacing_s=settings.min_request_spacing_s,
)
app.state.provider = GeminiClient.from_settings(settings)


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API documentation."""
    return RedirectResponse(url="/docs")


app.include_router(experiments.router, prefix="/api", tags=["experiments"])
app.include_router(llm.router, prefix="/api", tags=["llm"])
app.include_router(health.router, prefix="/api", tags=["health"])


def _json_safe(value):
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    """422 with rejected inputs echoed as JSON; NaN and infinity are sent as strings."""
    return JSONResponse(status_code=422, content={"detail": _json_safe(jsonable_encoder(exc.errors()))})


@app.middleware("http")
async def log_slow_requests(request: Request, call_next):
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if elapsed_ms >= _slow_request_ms_threshold():
            request_logger.warning(
                "slow_api_request method=%s path=%s status=%s elapsed_ms=%.2f",
                request.method,
                request.url.path,
                status_code,
                elapsed_ms,
            )
        elif _env_flag("API_LOG_ALL_REQUESTS", False):
            request_logger.info(
                "api_request method=%s path=%s status=%s elapsed_ms=%.2f",
                request.method,
                request.url.path,
                status_code,
                elapsed_ms,
            )
