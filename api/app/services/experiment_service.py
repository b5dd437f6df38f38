"""Experiment lifecycle helpers: create, read, export and per-parameter analysis."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from app.adapters.experiment_store import ExperimentStore
from app.config import SweepSettings
from app.models.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentDetail,
    ExperimentExport,
    GridPreview,
    ParameterAnalysis,
    ParameterScoreRow,
    ParameterStats,
    ResolvedExperiment,
    ResponseWithMetrics,
)
from app.services import grid_service
from app.services.errors import NotFoundError

logger = logging.getLogger(__name__)

ANALYZED_PARAMETERS = ("temperature", "top_p", "top_k", "max_tokens")


def resolve_experiment(data: ExperimentCreate, settings: SweepSettings) -> ResolvedExperiment:
    """Validate ranges and derive concrete steps; raises ExperimentValidationError."""
    resolved = ResolvedExperiment(
        name=data.name,
        description=data.description,
        prompt=data.prompt,
        model=(data.model or "").strip() or settings.default_model,
        temperature=grid_service.resolve_range(
            "temperature", data.temperature, settings.temperature_combinations
        ),
        top_p=grid_service.resolve_range("top_p", data.top_p, settings.top_p_combinations),
        top_k=grid_service.resolve_range("top_k", data.top_k, settings.top_k_combinations),
        max_tokens=grid_service.resolve_range(
            "max_tokens", data.max_tokens, settings.max_tokens_combinations
        ),
    )
    # Fails fast on anything the grid could not enumerate or that is too large to sweep.
    grid_service.ensure_grid_size(resolved, settings.max_grid_points)
    return resolved


def create_experiment(store: ExperimentStore, data: ExperimentCreate, settings: SweepSettings) -> Experiment:
    resolved = resolve_experiment(data, settings)
    experiment = store.create_experiment(resolved)
    logger.info(
        "experiment_created experiment_id=%s model=%s combinations=%s",
        experiment.id,
        experiment.model,
        grid_service.count_points(experiment),
    )
    return experiment


def require_experiment(store: ExperimentStore, experiment_id: str) -> Experiment:
    experiment = store.get_experiment(experiment_id)
    if experiment is None:
        raise NotFoundError(f"Experiment {experiment_id} not found")
    return experiment


def _responses_with_metrics(store: ExperimentStore, experiment_id: str) -> list[ResponseWithMetrics]:
    return [
        ResponseWithMetrics(response=r, metrics=store.get_metrics(r.id))
        for r in store.list_responses(experiment_id)
    ]


def get_experiment_detail(store: ExperimentStore, experiment_id: str) -> ExperimentDetail:
    experiment = require_experiment(store, experiment_id)
    return ExperimentDetail(
        **experiment.model_dump(),
        responses=_responses_with_metrics(store, experiment_id),
    )


def export_experiment(store: ExperimentStore, experiment_id: str) -> ExperimentExport:
    experiment = require_experiment(store, experiment_id)
    return ExperimentExport(
        exported_at=datetime.now(timezone.utc),
        experiment=experiment,
        responses=_responses_with_metrics(store, experiment_id),
    )


def preview_grid(
    store: ExperimentStore,
    experiment_id: str,
    max_responses: Optional[int] = None,
) -> GridPreview:
    experiment = require_experiment(store, experiment_id)
    return GridPreview(
        experiment_id=experiment.id,
        total=grid_service.count_points(experiment),
        points=grid_service.generate_points(experiment, max_responses=max_responses),
    )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def analyze_parameters(store: ExperimentStore, experiment_id: str) -> ParameterAnalysis:
    """Summarize each swept parameter and the average overall score per value."""
    require_experiment(store, experiment_id)
    rows = _responses_with_metrics(store, experiment_id)
    scored = [r.metrics.overall_score for r in rows if r.metrics is not None]

    stats: dict[str, ParameterStats] = {}
    score_by_value: dict[str, list[ParameterScoreRow]] = {}
    for name in ANALYZED_PARAMETERS:
        values = [float(getattr(r.response, name)) for r in rows]
        if not values:
            continue
        stats[name] = ParameterStats(min=min(values), max=max(values), avg=_mean(values))

        buckets: dict[float, list[Optional[float]]] = defaultdict(list)
        for r in rows:
            buckets[float(getattr(r.response, name))].append(
                r.metrics.overall_score if r.metrics is not None else None
            )
        table: list[ParameterScoreRow] = []
        for value in sorted(buckets):
            bucket_scores = [s for s in buckets[value] if s is not None]
            table.append(
                ParameterScoreRow(
                    value=value,
                    responses=len(buckets[value]),
                    avg_overall_score=_mean(bucket_scores) if bucket_scores else None,
                )
            )
        score_by_value[name] = table

    return ParameterAnalysis(
        experiment_id=experiment_id,
        responses=len(rows),
        scored_responses=len(scored),
        avg_overall_score=_mean(scored) if scored else None,
        stats=stats,
        score_by_value=score_by_value,
    )
