"""Provider failure taxonomy: map raw provider error text to typed errors."""

from __future__ import annotations

import re
from typing import Any, Optional

from app.services.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    ProviderTransportError,
)

# Order matters: quota is checked before the generic 429/rate-limit bucket.
_PATTERNS: list[tuple[re.Pattern[str], type[ProviderError], str]] = [
    (
        re.compile(
            r"api key not valid|invalid api key|api key is not configured|api_key_invalid|"
            r"permission_denied|unauthenticated|unauthorized|forbidden|status[=: ]40[13]",
            re.I,
        ),
        ProviderAuthError,
        "Provider rejected the credentials; fix configuration before retrying.",
    ),
    (
        re.compile(r"quota|insufficient_quota|resource[_ ]exhausted.*(per day|daily)|billing", re.I),
        ProviderQuotaExceeded,
        "Provider quota is exhausted; retry after the quota window resets.",
    ),
    (
        re.compile(r"rate limit|rate-limit|too many requests|resource[_ ]exhausted|status[=: ]429|http 429", re.I),
        ProviderRateLimited,
        "Provider is rate limiting requests; retry after a short delay.",
    ),
]


def _clean(value: Any) -> str:
    return str(value or "").strip()


def classify_failure(text: str, status_code: Optional[int] = None) -> dict[str, str]:
    """Return {"kind", "hint"} for a provider error message."""
    cleaned = _clean(text)
    combined = cleaned if status_code is None else f"status={status_code} {cleaned}"
    if not cleaned and status_code is None:
        return {"kind": "empty", "hint": "Provider failed without diagnostic output."}
    for pattern, error_cls, hint in _PATTERNS:
        if pattern.search(combined):
            return {"kind": error_cls.kind, "hint": hint}
    return {"kind": ProviderTransportError.kind, "hint": "Provider call failed; the run continues with the next point."}


def provider_error(text: str, status_code: Optional[int] = None) -> ProviderError:
    """Build the typed ProviderError matching the error text."""
    cleaned = _clean(text) or "provider call failed without diagnostic output"
    combined = cleaned if status_code is None else f"status={status_code} {cleaned}"
    for pattern, error_cls, _hint in _PATTERNS:
        if pattern.search(combined):
            return error_cls(cleaned, status_code=status_code)
    return ProviderTransportError(cleaned, status_code=status_code)


def retry_hint(error: ProviderError) -> str:
    return classify_failure(str(error), error.status_code)["hint"]
