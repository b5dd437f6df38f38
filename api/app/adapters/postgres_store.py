"""SQLAlchemy-backed ExperimentStore (PostgreSQL in production, sqlite in tests)."""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.models.experiment import (
    Experiment,
    ExperimentStatus,
    GeneratedResponse,
    MetricsResult,
    ParameterPoint,
    ParameterRange,
    ResolvedExperiment,
    TokenUsage,
)
from app.services.errors import NotFoundError


Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExperimentModel(Base):
    __tablename__ = "experiments"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    prompt = Column(Text, nullable=False)
    model = Column(String, nullable=False)
    temperature_min = Column(Float, nullable=False)
    temperature_max = Column(Float, nullable=False)
    temperature_step = Column(Float, nullable=True)
    top_p_min = Column(Float, nullable=False)
    top_p_max = Column(Float, nullable=False)
    top_p_step = Column(Float, nullable=True)
    top_k_min = Column(Float, nullable=False)
    top_k_max = Column(Float, nullable=False)
    top_k_step = Column(Float, nullable=True)
    max_tokens_min = Column(Float, nullable=False)
    max_tokens_max = Column(Float, nullable=False)
    max_tokens_step = Column(Float, nullable=True)
    status = Column(String, nullable=False, default=ExperimentStatus.PENDING.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ResponseModel(Base):
    __tablename__ = "responses"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True)
    experiment_id = Column(String(36), ForeignKey("experiments.id"), nullable=False, index=True)
    point_index = Column(Integer, nullable=False)
    temperature = Column(Float, nullable=False)
    top_p = Column(Float, nullable=False)
    top_k = Column(Integer, nullable=False)
    max_tokens = Column(Integer, nullable=False)
    model = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ResponseMetricsModel(Base):
    __tablename__ = "response_metrics"

    response_id = Column(String(36), ForeignKey("responses.id"), primary_key=True)
    coherence_score = Column(Float, nullable=False)
    completeness_score = Column(Float, nullable=False)
    length_score = Column(Float, nullable=False)
    structure_score = Column(Float, nullable=False)
    vocabulary_score = Column(Float, nullable=False)
    overall_score = Column(Float, nullable=False)
    word_count = Column(Integer, nullable=False)
    sentence_count = Column(Integer, nullable=False)
    paragraph_count = Column(Integer, nullable=False)
    avg_words_per_sentence = Column(Float, nullable=False)
    unique_words = Column(Integer, nullable=False)
    vocabulary_diversity = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


_METRIC_FIELDS = tuple(MetricsResult.model_fields.keys())


def _range(model: ExperimentModel, prefix: str) -> ParameterRange:
    return ParameterRange(
        min=getattr(model, f"{prefix}_min"),
        max=getattr(model, f"{prefix}_max"),
        step=getattr(model, f"{prefix}_step"),
    )


def _to_experiment(model: ExperimentModel) -> Experiment:
    return Experiment(
        id=model.id,
        name=model.name,
        description=model.description,
        prompt=model.prompt,
        model=model.model,
        temperature=_range(model, "temperature"),
        top_p=_range(model, "top_p"),
        top_k=_range(model, "top_k"),
        max_tokens=_range(model, "max_tokens"),
        status=ExperimentStatus(model.status),
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
    )


def _to_response(model: ResponseModel) -> GeneratedResponse:
    return GeneratedResponse(
        id=model.id,
        experiment_id=model.experiment_id,
        point_index=model.point_index,
        temperature=model.temperature,
        top_p=model.top_p,
        top_k=model.top_k,
        max_tokens=model.max_tokens,
        model=model.model,
        content=model.content,
        usage=TokenUsage(
            prompt_tokens=model.prompt_tokens,
            completion_tokens=model.completion_tokens,
            total_tokens=model.total_tokens,
        ),
        created_at=_aware(model.created_at),
    )


class PostgresExperimentStore:
    """SQLAlchemy ExperimentStore. Accepts any SQLAlchemy URL."""

    def __init__(self, database_url: str | None = None) -> None:
        if not database_url:
            database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresExperimentStore")

        self.engine = create_engine(database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self):
        """Get a new database session with proper cleanup."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_experiment(self, spec: ResolvedExperiment) -> Experiment:
        now = _now()
        with self._session() as session:
            model = ExperimentModel(
                id=str(uuid4()),
                name=spec.name,
                description=spec.description,
                prompt=spec.prompt,
                model=spec.model,
                status=ExperimentStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            for prefix in ("temperature", "top_p", "top_k", "max_tokens"):
                rng: ParameterRange = getattr(spec, prefix)
                setattr(model, f"{prefix}_min", rng.min)
                setattr(model, f"{prefix}_max", rng.max)
                setattr(model, f"{prefix}_step", rng.step)
            session.add(model)
            session.flush()
            return _to_experiment(model)

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with self._session() as session:
            model = session.query(ExperimentModel).filter_by(id=experiment_id).first()
            return _to_experiment(model) if model else None

    def list_experiments(self, limit: int = 100) -> list[Experiment]:
        with self._session() as session:
            models = (
                session.query(ExperimentModel)
                .order_by(ExperimentModel.created_at.desc(), ExperimentModel.seq.desc())
                .limit(max(1, min(int(limit), 1000)))
                .all()
            )
            return [_to_experiment(m) for m in models]

    def update_experiment_status(self, experiment_id: str, status: ExperimentStatus) -> Experiment:
        with self._session() as session:
            model = session.query(ExperimentModel).filter_by(id=experiment_id).first()
            if model is None:
                raise NotFoundError(f"Experiment {experiment_id} not found")
            model.status = status.value
            model.updated_at = _now()
            session.flush()
            return _to_experiment(model)

    def create_response(
        self,
        experiment_id: str,
        point_index: int,
        point: ParameterPoint,
        content: str,
        usage: TokenUsage,
    ) -> GeneratedResponse:
        with self._session() as session:
            if session.query(ExperimentModel.seq).filter(ExperimentModel.id == experiment_id).first() is None:
                raise NotFoundError(f"Experiment {experiment_id} not found")
            model = ResponseModel(
                id=str(uuid4()),
                experiment_id=experiment_id,
                point_index=point_index,
                temperature=point.temperature,
                top_p=point.top_p,
                top_k=point.top_k,
                max_tokens=point.max_tokens,
                model=point.model,
                content=content,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                created_at=_now(),
            )
            session.add(model)
            session.flush()
            return _to_response(model)

    def get_response(self, response_id: str) -> Optional[GeneratedResponse]:
        with self._session() as session:
            model = session.query(ResponseModel).filter_by(id=response_id).first()
            return _to_response(model) if model else None

    def list_responses(self, experiment_id: str) -> list[GeneratedResponse]:
        with self._session() as session:
            models = (
                session.query(ResponseModel)
                .filter_by(experiment_id=experiment_id)
                .order_by(ResponseModel.seq.asc())
                .all()
            )
            return [_to_response(m) for m in models]

    def upsert_metrics(self, response_id: str, metrics: MetricsResult) -> None:
        values = metrics.model_dump()
        with self._session() as session:
            if session.query(ResponseModel.seq).filter(ResponseModel.id == response_id).first() is None:
                raise NotFoundError(f"Response {response_id} not found")
            row = session.get(ResponseMetricsModel, response_id)
            if row is None:
                row = ResponseMetricsModel(response_id=response_id)
                session.add(row)
            for key in _METRIC_FIELDS:
                setattr(row, key, values[key])
            row.updated_at = _now()

    def get_metrics(self, response_id: str) -> Optional[MetricsResult]:
        with self._session() as session:
            row = session.get(ResponseMetricsModel, response_id)
            if row is None:
                return None
            return MetricsResult(**{key: getattr(row, key) for key in _METRIC_FIELDS})

    def count_metrics(self) -> int:
        with self._session() as session:
            return int(session.query(ResponseMetricsModel).count())

    def save(self) -> None:
        """Every write commits in its own session; nothing is buffered."""
