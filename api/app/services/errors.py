"""Error taxonomy shared by the grid, runner, provider client and routers."""

from __future__ import annotations


class ExperimentValidationError(ValueError):
    """Malformed experiment ranges; raised before any scheduling happens."""


class NotFoundError(LookupError):
    pass


class RunInProgressError(RuntimeError):
    """The experiment already has a sweep in flight."""


class ProviderError(RuntimeError):
    """Failure reported by the text-generation provider.

    `kind` is the taxonomy bucket, `retryable` hints that the caller may try
    again later, `fatal` means no further calls should be issued.
    """

    kind = "transport"
    retryable = False
    fatal = False

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderQuotaExceeded(ProviderError):
    kind = "quota_exceeded"
    retryable = True


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"
    retryable = True


class ProviderAuthError(ProviderError):
    kind = "auth"
    fatal = True


class ProviderConfigurationError(ProviderAuthError):
    kind = "configuration"


class ProviderTransportError(ProviderError):
    kind = "transport"


class ScoringError(RuntimeError):
    pass
