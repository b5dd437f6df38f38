"""ExperimentStore abstraction + in-memory backend.

The in-memory store optionally persists to a JSON file so a local dev
server survives restarts.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

from app.models.experiment import (
    Experiment,
    ExperimentStatus,
    GeneratedResponse,
    MetricsResult,
    ParameterPoint,
    ResolvedExperiment,
    TokenUsage,
)
from app.services.errors import NotFoundError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExperimentStore(Protocol):
    """Protocol for experiment storage. Implementations: InMemoryExperimentStore, PostgresExperimentStore."""

    def create_experiment(self, spec: ResolvedExperiment) -> Experiment:
        ...

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        ...

    def list_experiments(self, limit: int = 100) -> list[Experiment]:
        """Newest first."""
        ...

    def update_experiment_status(self, experiment_id: str, status: ExperimentStatus) -> Experiment:
        ...

    def create_response(
        self,
        experiment_id: str,
        point_index: int,
        point: ParameterPoint,
        content: str,
        usage: TokenUsage,
    ) -> GeneratedResponse:
        ...

    def get_response(self, response_id: str) -> Optional[GeneratedResponse]:
        ...

    def list_responses(self, experiment_id: str) -> list[GeneratedResponse]:
        """In persist order."""
        ...

    def upsert_metrics(self, response_id: str, metrics: MetricsResult) -> None:
        ...

    def get_metrics(self, response_id: str) -> Optional[MetricsResult]:
        ...

    def save(self) -> None:
        """Flush buffered writes. Responses and metrics are flushed only here or on a status change."""
        ...

class InMemoryExperimentStore:
    """In-memory ExperimentStore. Optional JSON persistence for restart."""

    def __init__(self, persist_path: Optional[str] = None) -> None:
        self._experiments: dict[str, Experiment] = {}
        self._responses: dict[str, GeneratedResponse] = {}
        self._responses_by_experiment: dict[str, list[str]] = {}
        self._metrics: dict[str, MetricsResult] = {}
        self._persist_path = persist_path
        self._lock = threading.RLock()

        if persist_path and os.path.isfile(persist_path):
            self._load()

    def _load(self) -> None:
        if not self._persist_path:
            return
        try:
            with open(self._persist_path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("experiment_store_load_failed path=%s error=%s", self._persist_path, exc)
            return
        for raw in data.get("experiments", []):
            exp = Experiment(**raw)
            self._experiments[exp.id] = exp
        for raw in data.get("responses", []):
            resp = GeneratedResponse(**raw)
            self._responses[resp.id] = resp
            self._responses_by_experiment.setdefault(resp.experiment_id, []).append(resp.id)
        for response_id, raw in (data.get("metrics") or {}).items():
            if response_id in self._responses:
                self._metrics[response_id] = MetricsResult(**raw)

    def save(self) -> None:
        """Persist to JSON if path set. Experiment writes save immediately; batch writers call this."""
        if not self._persist_path:
            return
        os.makedirs(os.path.dirname(self._persist_path) or ".", exist_ok=True)
        with self._lock:
            data = {
                "experiments": [e.model_dump(mode="json") for e in self._experiments.values()],
                "responses": [
                    self._responses[rid].model_dump(mode="json")
                    for ids in self._responses_by_experiment.values()
                    for rid in ids
                ],
                "metrics": {rid: m.model_dump(mode="json") for rid, m in self._metrics.items()},
            }
        with open(self._persist_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=0)

    def create_experiment(self, spec: ResolvedExperiment) -> Experiment:
        now = _now()
        experiment = Experiment(
            id=str(uuid4()),
            name=spec.name,
            description=spec.description,
            prompt=spec.prompt,
            model=spec.model,
            temperature=spec.temperature,
            top_p=spec.top_p,
            top_k=spec.top_k,
            max_tokens=spec.max_tokens,
            status=ExperimentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._experiments[experiment.id] = experiment
            self._responses_by_experiment[experiment.id] = []
        self.save()
        return experiment

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self._experiments.get(experiment_id)

    def list_experiments(self, limit: int = 100) -> list[Experiment]:
        with self._lock:
            items = list(self._experiments.values())
        # Stable on ties: later inserts first.
        ordered = sorted(enumerate(items), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [exp for _idx, exp in ordered][: max(1, int(limit))]

    def update_experiment_status(self, experiment_id: str, status: ExperimentStatus) -> Experiment:
        with self._lock:
            current = self._experiments.get(experiment_id)
            if current is None:
                raise NotFoundError(f"Experiment {experiment_id} not found")
            updated = current.model_copy(update={"status": status, "updated_at": _now()})
            self._experiments[experiment_id] = updated
        self.save()
        return updated

    def create_response(
        self,
        experiment_id: str,
        point_index: int,
        point: ParameterPoint,
        content: str,
        usage: TokenUsage,
    ) -> GeneratedResponse:
        with self._lock:
            if experiment_id not in self._experiments:
                raise NotFoundError(f"Experiment {experiment_id} not found")
            response = GeneratedResponse(
                id=str(uuid4()),
                experiment_id=experiment_id,
                point_index=point_index,
                temperature=point.temperature,
                top_p=point.top_p,
                top_k=point.top_k,
                max_tokens=point.max_tokens,
                model=point.model,
                content=content,
                usage=usage,
                created_at=_now(),
            )
            self._responses[response.id] = response
            self._responses_by_experiment.setdefault(experiment_id, []).append(response.id)
        return response

    def get_response(self, response_id: str) -> Optional[GeneratedResponse]:
        return self._responses.get(response_id)

    def list_responses(self, experiment_id: str) -> list[GeneratedResponse]:
        with self._lock:
            ids = list(self._responses_by_experiment.get(experiment_id, []))
        return [self._responses[rid] for rid in ids]

    def upsert_metrics(self, response_id: str, metrics: MetricsResult) -> None:
        with self._lock:
            if response_id not in self._responses:
                raise NotFoundError(f"Response {response_id} not found")
            self._metrics[response_id] = metrics

    def get_metrics(self, response_id: str) -> Optional[MetricsResult]:
        return self._metrics.get(response_id)

    def count_metrics(self) -> int:
        return len(self._metrics)
