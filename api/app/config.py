"""Runtime configuration for the sweep service.

Every knob the core consumes is enumerated once here, with its fallback.
Values come from environment variables; malformed numbers fall back to the
default instead of failing startup.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TEST_MODEL = "gemini-2.5-flash-lite"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class SweepSettings(BaseModel):
    default_model: str = DEFAULT_MODEL
    test_model: str = DEFAULT_TEST_MODEL

    # Combinations per dimension used when a range has no explicit step.
    temperature_combinations: int = Field(default=2, ge=1)
    top_p_combinations: int = Field(default=2, ge=1)
    top_k_combinations: int = Field(default=2, ge=1)
    max_tokens_combinations: int = Field(default=2, ge=1)

    # Admission control.
    max_requests_per_interval: int = Field(default=15, ge=1)
    rate_interval_s: float = Field(default=60.0, gt=0.0)
    rate_burst: int = Field(default=1, ge=1)
    min_request_spacing_s: float = Field(default=0.0, ge=0.0)

    default_max_responses: Optional[int] = Field(default=20, ge=1)
    # Ceiling on count_points for a stored experiment.
    max_grid_points: int = Field(default=10_000, ge=1)

    google_api_key: str = ""
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    provider_timeout_s: float = Field(default=60.0, gt=0.0)

    database_url: str = ""
    store_path: str = ""
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        return default


def _env_optional_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in {"none", "off", "0"}:
        return None
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def load_settings() -> SweepSettings:
    """Read settings from the environment.

    DEFAULT_COMBINATIONS seeds all four dimensions; the per-dimension
    variables override it.
    """
    combinations = _env_int("DEFAULT_COMBINATIONS", 2)
    origins = _env_str("ALLOWED_ORIGINS", "http://localhost:3000")
    return SweepSettings(
        default_model=_env_str("DEFAULT_MODEL", DEFAULT_MODEL),
        test_model=_env_str("TEST_MODEL", DEFAULT_TEST_MODEL),
        temperature_combinations=_env_int("TEMPERATURE_COMBINATIONS", combinations),
        top_p_combinations=_env_int("TOP_P_COMBINATIONS", combinations),
        top_k_combinations=_env_int("TOP_K_COMBINATIONS", combinations),
        max_tokens_combinations=_env_int("MAX_TOKENS_COMBINATIONS", combinations),
        max_requests_per_interval=_env_int("MAX_REQUESTS_PER_MINUTE", 15),
        rate_interval_s=_env_float("RATE_INTERVAL_SECONDS", 60.0, minimum=0.001),
        rate_burst=_env_int("RATE_BURST", 1),
        min_request_spacing_s=_env_float("MIN_REQUEST_SPACING_SECONDS", 0.0),
        default_max_responses=_env_optional_int("DEFAULT_MAX_RESPONSES", 20),
        max_grid_points=_env_int("MAX_GRID_POINTS", 10_000),
        google_api_key=_env_str("GOOGLE_AI_API_KEY"),
        gemini_base_url=_env_str("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
        provider_timeout_s=_env_float("PROVIDER_TIMEOUT_SECONDS", 60.0, minimum=1.0),
        database_url=_env_str("DATABASE_URL"),
        store_path=_env_str("EXPERIMENT_STORE_PATH"),
        allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
