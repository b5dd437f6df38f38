"""Pydantic models."""

from app.models.error import ErrorDetail
from app.models.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentDetail,
    ExperimentStatus,
    GeneratedResponse,
    MetricsResult,
    ParameterPoint,
    ParameterRange,
    RunResult,
)

__all__ = [
    "ErrorDetail",
    "Experiment",
    "ExperimentCreate",
    "ExperimentDetail",
    "ExperimentStatus",
    "GeneratedResponse",
    "MetricsResult",
    "ParameterPoint",
    "ParameterRange",
    "RunResult",
]
