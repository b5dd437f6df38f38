"""Run an experiment: sweep its grid through the shared scheduler and provider.

Points are issued strictly one at a time so persisted responses follow the
grid's enumeration order. Per-point provider failures are recorded and the
sweep moves on; fatal provider errors (bad or missing credentials) fail the
run and stop further calls.
"""

from __future__ import annotations

import logging
from itertools import islice
from typing import Callable, Optional

from app.adapters.experiment_store import ExperimentStore
from app.models.experiment import (
    Experiment,
    ExperimentStatus,
    ParameterPoint,
    PointFailure,
    RunResult,
)
from app.services import grid_service, metrics_service
from app.services.errors import (
    ExperimentValidationError,
    NotFoundError,
    ProviderError,
    RunInProgressError,
)
from app.services.provider_client import GenerationProvider
from app.services.rate_scheduler import RateScheduler

logger = logging.getLogger(__name__)


def _point_failure(index: int, point: ParameterPoint, error: ProviderError) -> PointFailure:
    return PointFailure(
        index=index,
        point=point,
        error_kind=error.kind,
        message=str(error)[:500],
        retryable=error.retryable,
    )


def _log_point_failure(experiment_id: str, index: int, point: ParameterPoint, error: ProviderError) -> None:
    logger.warning(
        "experiment_point_failed experiment_id=%s index=%s temperature=%s top_p=%s top_k=%s "
        "max_tokens=%s model=%s kind=%s retryable=%s fatal=%s error=%s",
        experiment_id,
        index,
        point.temperature,
        point.top_p,
        point.top_k,
        point.max_tokens,
        point.model,
        error.kind,
        error.retryable,
        error.fatal,
        str(error)[:300],
    )


def _finish(
    store: ExperimentStore,
    result: RunResult,
    status: ExperimentStatus,
) -> RunResult:
    store.update_experiment_status(result.experiment_id, status)
    result.status = status
    logger.info(
        "experiment_run_finished experiment_id=%s status=%s attempted=%s generated=%s failed_points=%s "
        "metrics_failed=%s cancelled=%s",
        result.experiment_id,
        status.value,
        result.combinations_attempted,
        result.responses_generated,
        len(result.failures),
        result.metrics_failed,
        result.cancelled,
    )
    return result


async def _sweep(
    experiment: Experiment,
    result: RunResult,
    *,
    store: ExperimentStore,
    scheduler: RateScheduler,
    provider: GenerationProvider,
    max_responses: Optional[int],
    should_cancel: Optional[Callable[[], bool]],
) -> ExperimentStatus:
    try:
        provider.ensure_configured()
    except ProviderError as exc:
        if not exc.fatal:
            raise
        logger.error("experiment_run_provider_unavailable experiment_id=%s error=%s", experiment.id, exc)
        result.error = str(exc)
        return ExperimentStatus.FAILED

    points = islice(grid_service.iter_points(experiment), max_responses)
    for index, point in enumerate(points):
        if should_cancel is not None and should_cancel():
            logger.info("experiment_run_cancelled experiment_id=%s next_index=%s", experiment.id, index)
            result.cancelled = True
            break

        await scheduler.acquire()
        result.combinations_attempted += 1
        try:
            reply = await provider.generate(experiment.prompt, point)
        except ProviderError as exc:
            _log_point_failure(experiment.id, index, point, exc)
            result.failures.append(_point_failure(index, point, exc))
            if exc.fatal:
                result.error = str(exc)
                return ExperimentStatus.FAILED
            continue

        response = store.create_response(experiment.id, index, point, reply.content, reply.usage)
        result.responses_generated += 1

        try:
            metrics_service.calculate_metrics(store, response.id)
        except Exception as exc:
            result.metrics_failed += 1
            logger.warning(
                "experiment_metrics_failed experiment_id=%s index=%s response_id=%s error=%s",
                experiment.id,
                index,
                response.id,
                exc,
            )

    return ExperimentStatus.COMPLETED


async def run_experiment(
    experiment_id: str,
    *,
    store: ExperimentStore,
    scheduler: RateScheduler,
    provider: GenerationProvider,
    max_responses: Optional[int] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> RunResult:
    """Sweep one experiment.

    Raises NotFoundError, RunInProgressError or ExperimentValidationError
    before any call. Any other error after the run starts marks the
    experiment failed and propagates.
    """
    experiment = store.get_experiment(experiment_id)
    if experiment is None:
        raise NotFoundError(f"Experiment {experiment_id} not found")
    if experiment.status == ExperimentStatus.RUNNING:
        raise RunInProgressError(f"Experiment {experiment_id} is already running")
    if max_responses is not None and max_responses < 0:
        raise ExperimentValidationError("max_responses must not be negative")

    total = grid_service.count_points(experiment)
    planned = total if max_responses is None else min(total, max_responses)

    store.update_experiment_status(experiment.id, ExperimentStatus.RUNNING)
    result = RunResult(
        experiment_id=experiment.id,
        status=ExperimentStatus.RUNNING,
        combinations_total=total,
        combinations_attempted=0,
        responses_generated=0,
    )
    logger.info(
        "experiment_run_started experiment_id=%s model=%s points=%s total=%s",
        experiment.id,
        experiment.model,
        planned,
        total,
    )

    try:
        status = await _sweep(
            experiment,
            result,
            store=store,
            scheduler=scheduler,
            provider=provider,
            max_responses=max_responses,
            should_cancel=should_cancel,
        )
    except BaseException as exc:
        logger.exception("experiment_run_crashed experiment_id=%s error=%s", experiment.id, exc)
        result.error = str(exc)[:500] or type(exc).__name__
        _finish(store, result, ExperimentStatus.FAILED)
        raise
    return _finish(store, result, status)
