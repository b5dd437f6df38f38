"""Direct provider access: one-off generation and scheduler status."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import SweepSettings
from app.models.error import ErrorDetail
from app.models.experiment import ParameterPoint
from app.models.llm import LlmTestRequest, LlmTestResponse, RateLimiterStatusResponse
from app.routers.experiments import get_provider, get_scheduler, get_settings
from app.services import failure_taxonomy_service
from app.services.errors import ProviderError
from app.services.provider_client import GenerationProvider
from app.services.rate_scheduler import RateScheduler

router = APIRouter()
logger = logging.getLogger(__name__)

TEST_DEFAULTS = {"temperature": 0.7, "top_p": 0.9, "top_k": 40, "max_tokens": 200}


@router.post(
    "/llm/test",
    response_model=LlmTestResponse,
    responses={429: {"model": ErrorDetail}, 502: {"model": ErrorDetail}, 503: {"model": ErrorDetail}},
)
async def test_generation(
    data: LlmTestRequest,
    settings: SweepSettings = Depends(get_settings),
    scheduler: RateScheduler = Depends(get_scheduler),
    provider: GenerationProvider = Depends(get_provider),
) -> LlmTestResponse:
    overrides = data.parameters.model_dump(exclude_none=True)
    point = ParameterPoint(**{**TEST_DEFAULTS, "model": settings.test_model, **overrides})
    try:
        provider.ensure_configured()
        await scheduler.acquire()
        reply = await provider.generate(data.prompt, point)
    except ProviderError as exc:
        logger.warning("llm_test_failed kind=%s model=%s error=%s", exc.kind, point.model, exc)
        if exc.fatal:
            raise HTTPException(status_code=503, detail=str(exc))
        if exc.retryable:
            raise HTTPException(
                status_code=429,
                detail=f"{exc} ({failure_taxonomy_service.retry_hint(exc)})",
            )
        raise HTTPException(status_code=502, detail=str(exc))
    return LlmTestResponse(prompt=data.prompt, parameters=point, content=reply.content, usage=reply.usage)


@router.get("/llm/rate-limiter-status", response_model=RateLimiterStatusResponse)
async def rate_limiter_status(scheduler: RateScheduler = Depends(get_scheduler)) -> RateLimiterStatusResponse:
    return RateLimiterStatusResponse(status=scheduler.status())
