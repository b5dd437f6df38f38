"""Experiment API routes: create, list, inspect, run, export, analyze."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from app.adapters.experiment_store import ExperimentStore
from app.config import SweepSettings
from app.models.error import ErrorDetail
from app.models.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentDetail,
    ExperimentExport,
    GridPreview,
    MetricsResult,
    ParameterAnalysis,
    RunRequest,
    RunResult,
)
from app.services import experiment_runner, experiment_service, metrics_service
from app.services.errors import (
    ExperimentValidationError,
    NotFoundError,
    RunInProgressError,
    ScoringError,
)
from app.services.provider_client import GenerationProvider
from app.services.rate_scheduler import RateScheduler

router = APIRouter()


def get_store(request: Request) -> ExperimentStore:
    return request.app.state.experiment_store


def get_settings(request: Request) -> SweepSettings:
    return request.app.state.settings


def get_scheduler(request: Request) -> RateScheduler:
    return request.app.state.scheduler


def get_provider(request: Request) -> GenerationProvider:
    return request.app.state.provider


@router.post(
    "/experiments",
    response_model=Experiment,
    status_code=201,
    responses={400: {"model": ErrorDetail}},
)
async def create_experiment(
    data: ExperimentCreate,
    store: ExperimentStore = Depends(get_store),
    settings: SweepSettings = Depends(get_settings),
) -> Experiment:
    try:
        return experiment_service.create_experiment(store, data, settings)
    except ExperimentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/experiments", response_model=list[Experiment])
async def list_experiments(
    limit: int = Query(100, ge=1, le=1000),
    store: ExperimentStore = Depends(get_store),
) -> list[Experiment]:
    return store.list_experiments(limit=limit)


@router.get(
    "/experiments/{experiment_id}",
    response_model=ExperimentDetail,
    responses={404: {"model": ErrorDetail}},
)
async def get_experiment(experiment_id: str, store: ExperimentStore = Depends(get_store)) -> ExperimentDetail:
    try:
        return experiment_service.get_experiment_detail(store, experiment_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Experiment not found")


@router.get(
    "/experiments/{experiment_id}/grid",
    response_model=GridPreview,
    responses={404: {"model": ErrorDetail}},
)
async def preview_grid(
    experiment_id: str,
    max_responses: int = Query(100, ge=1, le=10000),
    store: ExperimentStore = Depends(get_store),
) -> GridPreview:
    try:
        return experiment_service.preview_grid(store, experiment_id, max_responses=max_responses)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Experiment not found")


@router.post(
    "/experiments/{experiment_id}/run",
    response_model=RunResult,
    responses={
        400: {"model": ErrorDetail},
        404: {"model": ErrorDetail},
        409: {"model": ErrorDetail},
    },
)
async def run_experiment(
    experiment_id: str,
    data: Optional[RunRequest] = Body(None),
    store: ExperimentStore = Depends(get_store),
    settings: SweepSettings = Depends(get_settings),
    scheduler: RateScheduler = Depends(get_scheduler),
    provider: GenerationProvider = Depends(get_provider),
) -> RunResult:
    max_responses = data.max_responses if data and data.max_responses else settings.default_max_responses
    try:
        return await experiment_runner.run_experiment(
            experiment_id,
            store=store,
            scheduler=scheduler,
            provider=provider,
            max_responses=max_responses,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Experiment not found")
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ExperimentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get(
    "/experiments/{experiment_id}/export",
    response_model=ExperimentExport,
    responses={404: {"model": ErrorDetail}},
)
async def export_experiment(experiment_id: str, store: ExperimentStore = Depends(get_store)) -> ExperimentExport:
    try:
        return experiment_service.export_experiment(store, experiment_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Experiment not found")


@router.get(
    "/experiments/{experiment_id}/analysis",
    response_model=ParameterAnalysis,
    responses={404: {"model": ErrorDetail}},
)
async def analyze_experiment(
    experiment_id: str, store: ExperimentStore = Depends(get_store)
) -> ParameterAnalysis:
    try:
        return experiment_service.analyze_parameters(store, experiment_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Experiment not found")


@router.post(
    "/responses/{response_id}/metrics",
    response_model=MetricsResult,
    responses={404: {"model": ErrorDetail}, 500: {"model": ErrorDetail}},
)
async def calculate_response_metrics(
    response_id: str, store: ExperimentStore = Depends(get_store)
) -> MetricsResult:
    try:
        metrics = metrics_service.calculate_metrics(store, response_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Response not found")
    except ScoringError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    store.save()
    return metrics
