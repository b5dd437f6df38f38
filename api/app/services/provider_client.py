"""Gemini text-generation client used by experiment runs.

Talks to the ``models/{model}:generateContent`` REST endpoint with httpx so
it stays a thin, dependency-light call contract:
``generate(prompt, point) -> ProviderReply``.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from app.config import SweepSettings
from app.models.experiment import ParameterPoint, TokenUsage
from app.services import failure_taxonomy_service
from app.services.errors import ProviderConfigurationError, ProviderTransportError

logger = logging.getLogger(__name__)


class ProviderReply(BaseModel):
    content: str
    usage: TokenUsage


class GenerationProvider(Protocol):
    def ensure_configured(self) -> None:
        ...

    async def generate(self, prompt: str, point: ParameterPoint) -> ProviderReply:
        ...


def estimate_tokens(value: str) -> int:
    return math.ceil(len(value) / 4)


def estimate_usage(prompt: str, content: str) -> TokenUsage:
    prompt_tokens = estimate_tokens(prompt)
    completion_tokens = estimate_tokens(content)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def _error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "")[:500]
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        err = data["error"]
        return f"{err.get('status') or ''} {err.get('message') or ''}".strip()
    return str(data)[:500]


def _extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise ProviderTransportError(f"Unexpected Gemini payload type: {type(data).__name__}")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = data.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        raise ProviderTransportError(f"Gemini payload missing candidates{f' (blocked: {reason})' if reason else ''}")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = (content or {}).get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise ProviderTransportError("Gemini payload missing content.parts")
    return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_s: float = 60.0,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: SweepSettings) -> "GeminiClient":
        return cls(
            api_key=settings.google_api_key,
            base_url=settings.gemini_base_url,
            timeout_s=settings.provider_timeout_s,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ProviderConfigurationError("GOOGLE_AI_API_KEY is not configured")

    async def generate(self, prompt: str, point: ParameterPoint) -> ProviderReply:
        self.ensure_configured()
        url = f"{self.base_url}/models/{point.model}:generateContent"
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": point.temperature,
                "topP": point.top_p,
                "topK": point.top_k,
                "maxOutputTokens": point.max_tokens,
            },
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderTransportError(f"Gemini request failed: {exc.__class__.__name__}: {exc}") from exc
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))

        status = int(resp.status_code)
        if status >= 400:
            error = failure_taxonomy_service.provider_error(_error_text(resp), status_code=status)
            logger.warning(
                "provider_call_failed model=%s status=%s kind=%s elapsed_ms=%s",
                point.model,
                status,
                error.kind,
                elapsed_ms,
            )
            raise error

        try:
            data = resp.json()
        except ValueError:
            raise ProviderTransportError(f"Gemini response was not JSON (status={status}): {(resp.text or '')[:500]}")

        content = _extract_content(data)
        logger.debug("provider_call_ok model=%s elapsed_ms=%s chars=%s", point.model, elapsed_ms, len(content))
        return ProviderReply(content=content, usage=estimate_usage(prompt, content))
