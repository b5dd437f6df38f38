"""Experiment, grid point, response and metrics models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExperimentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ParameterRange(BaseModel):
    """Resolved range of one grid dimension. step is None only when min == max."""

    model_config = ConfigDict(allow_inf_nan=False)

    min: float
    max: float
    step: Optional[float] = None


class ParameterRangeInput(BaseModel):
    """Range as supplied by a client: explicit step or a combinations count."""

    model_config = ConfigDict(allow_inf_nan=False)

    min: float
    max: float
    step: Optional[float] = None
    combinations: Optional[int] = Field(default=None, ge=1, le=100)


class ExperimentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    prompt: str = Field(..., min_length=1)
    model: Optional[str] = None
    temperature: ParameterRangeInput
    top_p: ParameterRangeInput
    top_k: ParameterRangeInput
    max_tokens: ParameterRangeInput

    @field_validator("name", "prompt", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v


class Experiment(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    prompt: str
    model: str
    temperature: ParameterRange
    top_p: ParameterRange
    top_k: ParameterRange
    max_tokens: ParameterRange
    status: ExperimentStatus = ExperimentStatus.PENDING
    created_at: datetime
    updated_at: datetime


class ParameterPoint(BaseModel):
    """One concrete combination sent to the provider."""

    model_config = ConfigDict(frozen=True)

    temperature: float
    top_p: float
    top_k: int
    max_tokens: int
    model: str


class TokenUsage(BaseModel):
    prompt_tokens: int = Field(ge=0)
    completion_tokens: int = Field(ge=0)
    total_tokens: int = Field(ge=0)


class GeneratedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    experiment_id: str
    point_index: int = Field(ge=0)
    temperature: float
    top_p: float
    top_k: int
    max_tokens: int
    model: str
    content: str
    usage: TokenUsage
    created_at: datetime


class TextStats(BaseModel):
    word_count: int = Field(ge=0)
    sentence_count: int = Field(ge=0)
    paragraph_count: int = Field(ge=0)
    avg_words_per_sentence: float = Field(ge=0.0)
    unique_words: int = Field(ge=0)
    vocabulary_diversity: float = Field(ge=0.0, le=1.0)


class MetricsResult(TextStats):
    coherence_score: float = Field(ge=0.0, le=1.0)
    completeness_score: float = Field(ge=0.0, le=1.0)
    length_score: float = Field(ge=0.0, le=1.0)
    structure_score: float = Field(ge=0.0, le=1.0)
    vocabulary_score: float = Field(ge=0.0, le=1.0)
    overall_score: float = Field(ge=0.0, le=1.0)


class ResponseWithMetrics(BaseModel):
    response: GeneratedResponse
    metrics: Optional[MetricsResult] = None


class ExperimentDetail(Experiment):
    responses: list[ResponseWithMetrics] = Field(default_factory=list)


class RunRequest(BaseModel):
    max_responses: Optional[int] = Field(default=None, ge=1, le=100)


class PointFailure(BaseModel):
    index: int = Field(ge=0)
    point: ParameterPoint
    error_kind: str
    message: str
    retryable: bool = False


class RunResult(BaseModel):
    experiment_id: str
    status: ExperimentStatus
    combinations_total: int = Field(ge=0)
    combinations_attempted: int = Field(ge=0)
    responses_generated: int = Field(ge=0)
    metrics_failed: int = Field(default=0, ge=0)
    cancelled: bool = False
    error: Optional[str] = None
    failures: list[PointFailure] = Field(default_factory=list)


class SchedulerStatus(BaseModel):
    available_tokens: float = Field(ge=0.0)
    queue_length: int = Field(ge=0)
    budget: int = Field(ge=1)
    interval_s: float
    burst: int = Field(ge=1)
    min_spacing_s: float = Field(ge=0.0)
    token_interval_s: float


class GridPreview(BaseModel):
    experiment_id: str
    total: int = Field(ge=0)
    points: list[ParameterPoint] = Field(default_factory=list)


class ParameterStats(BaseModel):
    min: float
    max: float
    avg: float


class ParameterScoreRow(BaseModel):
    value: float
    responses: int = Field(ge=0)
    avg_overall_score: Optional[float] = None


class ParameterAnalysis(BaseModel):
    experiment_id: str
    responses: int = Field(ge=0)
    scored_responses: int = Field(ge=0)
    avg_overall_score: Optional[float] = None
    stats: dict[str, ParameterStats] = Field(default_factory=dict)
    score_by_value: dict[str, list[ParameterScoreRow]] = Field(default_factory=dict)


class ExperimentExport(BaseModel):
    exported_at: datetime
    experiment: Experiment
    responses: list[ResponseWithMetrics] = Field(default_factory=list)


class ResolvedExperiment(BaseModel):
    """Validated experiment definition with concrete steps, ready to persist."""

    name: str
    description: Optional[str] = None
    prompt: str
    model: str
    temperature: ParameterRange
    top_p: ParameterRange
    top_k: ParameterRange
    max_tokens: ParameterRange
