"""HTTP contract for /api/experiments and /api/responses."""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient

from app.models.experiment import ExperimentStatus
from app.services.errors import ProviderQuotaExceeded

RANGE_TWO = {"min": 0.1, "max": 0.9}


def _payload(**overrides) -> dict:
    payload = {
        "name": "Tides sweep",
        "description": "temperature vs top_p",
        "prompt": "Explain how ocean tides work.",
        "model": "gemini-test",
        "temperature": RANGE_TWO,
        "top_p": RANGE_TWO,
        "top_k": {"min": 10, "max": 50},
        "max_tokens": {"min": 10, "max": 50},
    }
    payload.update(overrides)
    return payload


async def _create(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/experiments", json=_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_experiment_returns_resolved_ranges(client: AsyncClient):
    data = await _create(client)

    assert data["status"] == "pending"
    assert data["model"] == "gemini-test"
    assert data["temperature"]["step"] == pytest.approx(0.8)
    assert data["top_k"] == {"min": 10.0, "max": 50.0, "step": 40.0}


@pytest.mark.asyncio
async def test_create_experiment_invalid_range_is_400(client: AsyncClient):
    response = await client.post("/api/experiments", json=_payload(top_p={"min": 0.9, "max": 0.1}))

    assert response.status_code == 400
    assert set(response.json()) == {"detail"}
    assert "top_p" in response.json()["detail"]


@pytest.mark.asyncio
async def test_create_experiment_missing_prompt_is_422(client: AsyncClient):
    response = await client.post("/api/experiments", json=_payload(prompt="   "))

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_experiments_newest_first(client: AsyncClient):
    first = await _create(client, name="first")
    second = await _create(client, name="second")

    response = await client.get("/api/experiments")

    assert response.status_code == 200
    assert [e["id"] for e in response.json()] == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_get_unknown_experiment_is_404(client: AsyncClient):
    for path in ("", "/grid", "/export", "/analysis"):
        response = await client.get(f"/api/experiments/does-not-exist{path}")
        assert response.status_code == 404, path
        assert response.json() == {"detail": "Experiment not found"}


@pytest.mark.asyncio
async def test_grid_preview(client: AsyncClient):
    experiment = await _create(client)

    response = await client.get(f"/api/experiments/{experiment['id']}/grid", params={"max_responses": 3})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 16
    assert len(data["points"]) == 3
    assert data["points"][0] == {
        "temperature": 0.1,
        "top_p": 0.1,
        "top_k": 10,
        "max_tokens": 10,
        "model": "gemini-test",
    }


@pytest.mark.asyncio
async def test_run_experiment_end_to_end(client: AsyncClient, fake_provider):
    experiment = await _create(client)

    run = await client.post(f"/api/experiments/{experiment['id']}/run")

    assert run.status_code == 200, run.text
    result = run.json()
    assert result["status"] == "completed"
    assert result["combinations_total"] == 16
    assert result["responses_generated"] == 16
    assert len(fake_provider.calls) == 16

    detail = (await client.get(f"/api/experiments/{experiment['id']}")).json()
    assert detail["status"] == "completed"
    assert len(detail["responses"]) == 16
    assert all(0.0 <= r["metrics"]["overall_score"] <= 1.0 for r in detail["responses"])


@pytest.mark.asyncio
async def test_run_respects_max_responses(client: AsyncClient, fake_provider):
    experiment = await _create(client)

    run = await client.post(f"/api/experiments/{experiment['id']}/run", json={"max_responses": 4})

    assert run.status_code == 200
    assert run.json()["combinations_attempted"] == 4
    assert len(fake_provider.calls) == 4


@pytest.mark.asyncio
async def test_run_uses_default_max_responses_setting(client: AsyncClient, settings, fake_provider):
    settings.default_max_responses = 2
    experiment = await _create(client)

    run = await client.post(f"/api/experiments/{experiment['id']}/run")

    assert run.json()["combinations_attempted"] == 2


@pytest.mark.asyncio
async def test_run_reports_partial_failures(client: AsyncClient, fake_provider):
    fake_provider._failures[1] = ProviderQuotaExceeded("Quota exceeded", status_code=429)
    experiment = await _create(client)

    result = (await client.post(f"/api/experiments/{experiment['id']}/run")).json()

    assert result["status"] == "completed"
    assert result["responses_generated"] == 15
    assert result["failures"][0]["index"] == 1
    assert result["failures"][0]["error_kind"] == "quota_exceeded"
    assert result["failures"][0]["retryable"] is True


@pytest.mark.asyncio
async def test_run_unknown_experiment_is_404(client: AsyncClient):
    response = await client.post("/api/experiments/missing/run")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_export_and_analysis(client: AsyncClient):
    experiment = await _create(client)
    await client.post(f"/api/experiments/{experiment['id']}/run", json={"max_responses": 8})

    export = await client.get(f"/api/experiments/{experiment['id']}/export")
    analysis = await client.get(f"/api/experiments/{experiment['id']}/analysis")

    assert export.status_code == 200
    assert export.json()["experiment"]["id"] == experiment["id"]
    assert len(export.json()["responses"]) == 8
    assert analysis.status_code == 200
    body = analysis.json()
    assert body["responses"] == 8
    assert body["scored_responses"] == 8
    # first eight points all share temperature 0.1
    assert [row["value"] for row in body["score_by_value"]["temperature"]] == [0.1]
    assert [row["value"] for row in body["score_by_value"]["top_p"]] == [0.1, 0.9]


@pytest.mark.asyncio
async def test_recalculate_metrics_is_idempotent(client: AsyncClient, store):
    experiment = await _create(client)
    await client.post(f"/api/experiments/{experiment['id']}/run", json={"max_responses": 1})
    response_id = store.list_responses(experiment["id"])[0].id

    first = await client.post(f"/api/responses/{response_id}/metrics")
    second = await client.post(f"/api/responses/{response_id}/metrics")

    assert first.status_code == 200
    assert first.json() == second.json()
    assert store.count_metrics() == 1


@pytest.mark.asyncio
async def test_metrics_for_unknown_response_is_404(client: AsyncClient):
    response = await client.post("/api/responses/missing/metrics")

    assert response.status_code == 404
    assert response.json() == {"detail": "Response not found"}


@pytest.mark.asyncio
@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
async def test_create_experiment_non_finite_number_is_422(client: AsyncClient, literal):
    body = json.dumps(_payload(top_p={"min": 0.1, "max": 0.9, "step": 0.5})).replace("0.5", literal)

    response = await client.post(
        "/api/experiments", content=body, headers={"content-type": "application/json"}
    )

    assert response.status_code == 422
    errors = response.json()["detail"]
    assert errors[0]["loc"] == ["body", "top_p", "step"]
    assert errors[0]["input"] == str(float(literal.lower().replace("infinity", "inf")))


@pytest.mark.asyncio
async def test_create_experiment_oversized_grid_is_400(client: AsyncClient):
    hundred = {"combinations": 100}
    response = await client.post(
        "/api/experiments",
        json=_payload(
            temperature={"min": 0.0, "max": 2.0, **hundred},
            top_p={"min": 0.0, "max": 1.0, **hundred},
            top_k={"min": 1, "max": 100, **hundred},
            max_tokens={"min": 1, "max": 4000, **hundred},
        ),
    )

    assert response.status_code == 400
    assert "more than the allowed 10000" in response.json()["detail"]


@pytest.mark.asyncio
async def test_grid_preview_is_capped_by_default(client: AsyncClient):
    experiment = await _create(
        client,
        temperature={"min": 0.0, "max": 1.0, "combinations": 11},
        top_p={"min": 0.0, "max": 1.0, "combinations": 11},
        top_k={"min": 40, "max": 40},
        max_tokens={"min": 100, "max": 100},
    )

    response = await client.get(f"/api/experiments/{experiment['id']}/grid")

    assert response.status_code == 200
    assert response.json()["total"] == 121
    assert len(response.json()["points"]) == 100


@pytest.mark.asyncio
async def test_run_while_running_is_409(client: AsyncClient, store, fake_provider):
    experiment = await _create(client)
    store.update_experiment_status(experiment["id"], ExperimentStatus.RUNNING)

    response = await client.post(f"/api/experiments/{experiment['id']}/run", json={"max_responses": 1})

    assert response.status_code == 409
    assert "already running" in response.json()["detail"]
    assert fake_provider.calls == []
