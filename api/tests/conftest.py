"""Pytest configuration and fixtures.

Async tests run on ``pytest-asyncio``. API tests swap the process-wide store,
scheduler and provider on ``app.state`` for per-test instances so nothing
leaks between tests or reaches the network.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# app.main reads settings at import; keep tests on the in-memory store.
for _key in ("DATABASE_URL", "EXPERIMENT_STORE_PATH", "GOOGLE_AI_API_KEY"):
    os.environ.pop(_key, None)

from app.adapters.experiment_store import InMemoryExperimentStore  # noqa: E402
from app.config import SweepSettings  # noqa: E402
from app.models.experiment import ParameterPoint  # noqa: E402
from app.services.errors import ProviderError  # noqa: E402
from app.services.provider_client import ProviderReply, estimate_usage  # noqa: E402
from app.services.rate_scheduler import RateScheduler  # noqa: E402


class VirtualClock:
    """Monotonic clock whose sleep advances time instantly.

    ``sleep`` yields to the loop before advancing so tasks released by the
    drain step observe the time at which they were admitted.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(0)
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProvider:
    """In-process GenerationProvider.

    ``failures`` maps a call index (0-based) to the ProviderError raised for
    that call; ``configured_error`` is raised by ensure_configured.
    """

    def __init__(
        self,
        *,
        reply: Optional[Callable[[str, ParameterPoint], str]] = None,
        failures: Optional[dict[int, ProviderError]] = None,
        configured_error: Optional[ProviderError] = None,
    ) -> None:
        self.calls: list[tuple[str, ParameterPoint]] = []
        self._reply = reply or _default_reply
        self._failures = dict(failures or {})
        self._configured_error = configured_error

    def ensure_configured(self) -> None:
        if self._configured_error is not None:
            raise self._configured_error

    async def generate(self, prompt: str, point: ParameterPoint) -> ProviderReply:
        index = len(self.calls)
        self.calls.append((prompt, point))
        if index in self._failures:
            raise self._failures[index]
        content = self._reply(prompt, point)
        return ProviderReply(content=content, usage=estimate_usage(prompt, content))


def _default_reply(prompt: str, point: ParameterPoint) -> str:
    return (
        "First, a short introduction to the topic. "
        f"The answer uses temperature {point.temperature} and top_p {point.top_p}. "
        "However, the details matter for every reader.\n\n"
        "In summary, the response covers the question."
    )


def fast_scheduler() -> RateScheduler:
    """Scheduler with enough burst that tests never wait on it."""
    return RateScheduler(10_000, 1.0, burst=10_000)


@pytest.fixture
def virtual_clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def store() -> InMemoryExperimentStore:
    return InMemoryExperimentStore()


@pytest.fixture
def settings() -> SweepSettings:
    return SweepSettings(google_api_key="test-key", default_max_responses=None)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def client(store, settings, fake_provider):
    """ASGI client with a fresh store, scheduler and provider on app.state."""
    from httpx import ASGITransport, AsyncClient

    from app.main import app

    saved = {
        name: getattr(app.state, name, None)
        for name in ("experiment_store", "settings", "scheduler", "provider")
    }
    app.state.experiment_store = store
    app.state.settings = settings
    app.state.scheduler = fast_scheduler()
    app.state.provider = fake_provider
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        for name, value in saved.items():
            setattr(app.state, name, value)
