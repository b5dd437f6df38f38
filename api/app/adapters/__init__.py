"""Adapters for experiment storage: in-memory/JSON and SQLAlchemy."""

from app.adapters.experiment_store import InMemoryExperimentStore
from app.adapters.postgres_store import PostgresExperimentStore

__all__ = ["InMemoryExperimentStore", "PostgresExperimentStore"]
