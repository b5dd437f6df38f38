"""One-off generation request/response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.models.experiment import ParameterPoint, SchedulerStatus, TokenUsage


class GenerationParametersInput(BaseModel):
    """Optional overrides; unset fields take the documented test defaults."""

    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=4000)
    model: Optional[str] = None


class LlmTestRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    parameters: GenerationParametersInput = Field(default_factory=GenerationParametersInput)


class LlmTestResponse(BaseModel):
    prompt: str
    parameters: ParameterPoint
    content: str
    usage: TokenUsage


class RateLimiterStatusResponse(BaseModel):
    status: SchedulerStatus
