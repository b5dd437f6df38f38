"""Parameter grid enumeration for experiment sweeps.

The grid is an index-based nested product over four dimensions
(temperature -> top_p -> top_k -> max_tokens, outer to inner). Values are
computed as ``min + i * step`` and clamped to ``max`` so both endpoints are
always emitted, then rounded the same way on every call so regenerating the
same experiment yields identical points.

Points are produced lazily; ``count_points`` is pure arithmetic, so a grid's
size can be checked without enumerating it.
"""

from __future__ import annotations

import math
from itertools import islice
from typing import Iterator, Optional, Protocol

from app.models.experiment import ParameterPoint, ParameterRange, ParameterRangeInput
from app.services.errors import ExperimentValidationError

DIMENSIONS = ("temperature", "top_p", "top_k", "max_tokens")

BOUNDS: dict[str, tuple[float, float]] = {
    "temperature": (0.0, 2.0),
    "top_p": (0.0, 1.0),
    "top_k": (1.0, 100.0),
    "max_tokens": (1.0, 4000.0),
}

# Decimal places per dimension; None rounds to an integer.
ROUNDING: dict[str, Optional[int]] = {
    "temperature": 2,
    "top_p": 2,
    "top_k": None,
    "max_tokens": None,
}


class GridSpec(Protocol):
    model: str
    temperature: ParameterRange
    top_p: ParameterRange
    top_k: ParameterRange
    max_tokens: ParameterRange


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def _require_finite(name: str, **values: Optional[float]) -> None:
    for label, value in values.items():
        if value is not None and not math.isfinite(value):
            raise ExperimentValidationError(f"{name} {label} must be a finite number")


def resolve_range(
    name: str,
    raw: ParameterRangeInput,
    default_combinations: int,
) -> ParameterRange:
    """Turn a client range into a concrete {min, max, step}.

    An explicit step wins. Otherwise step = (max - min) / (combinations - 1);
    a single combination collapses the dimension to its min.
    """
    _require_finite(name, min=raw.min, max=raw.max, step=raw.step)
    low, high = BOUNDS[name]
    if raw.min < low or raw.max > high:
        raise ExperimentValidationError(f"{name} range must lie within [{low:g}, {high:g}]")
    if raw.min > raw.max:
        raise ExperimentValidationError(f"{name} min ({raw.min:g}) is greater than max ({raw.max:g})")
    if raw.min == raw.max:
        return ParameterRange(min=raw.min, max=raw.max, step=None)
    if raw.step is not None:
        if raw.step <= 0:
            raise ExperimentValidationError(f"{name} step must be positive, got {raw.step:g}")
        return ParameterRange(min=raw.min, max=raw.max, step=raw.step)
    combinations = raw.combinations if raw.combinations is not None else default_combinations
    if combinations <= 1:
        return ParameterRange(min=raw.min, max=raw.min, step=None)
    return ParameterRange(min=raw.min, max=raw.max, step=(raw.max - raw.min) / (combinations - 1))


def dimension_steps(name: str, rng: ParameterRange) -> int:
    _require_finite(name, min=rng.min, max=rng.max, step=rng.step)
    if rng.min > rng.max:
        raise ExperimentValidationError(f"{name} min ({rng.min:g}) is greater than max ({rng.max:g})")
    if rng.min == rng.max:
        return 0
    if rng.step is None or rng.step <= 0:
        raise ExperimentValidationError(f"{name} needs a positive step for a non-degenerate range")
    ratio = (rng.max - rng.min) / rng.step
    if not math.isfinite(ratio):
        raise ExperimentValidationError(f"{name} step {rng.step:g} is too small")
    return math.ceil(ratio)


def _dimension_value(name: str, rng: ParameterRange, index: int) -> float | int:
    value = min(rng.min + index * (rng.step or 0.0), rng.max)
    digits = ROUNDING[name]
    if digits is None:
        return int(_round_half_up(value))
    return _round_half_up(value, digits)


def count_points(spec: GridSpec) -> int:
    total = 1
    for name in DIMENSIONS:
        total *= dimension_steps(name, getattr(spec, name)) + 1
    return total


def ensure_grid_size(spec: GridSpec, limit: int) -> int:
    """Return the point count; raise if it exceeds ``limit``."""
    total = count_points(spec)
    if total > limit:
        raise ExperimentValidationError(
            f"grid has {total} parameter combinations, more than the allowed {limit}"
        )
    return total


def iter_points(spec: GridSpec) -> Iterator[ParameterPoint]:
    """Yield every parameter point in sweep order without materializing the grid."""
    sizes = {name: dimension_steps(name, getattr(spec, name)) + 1 for name in DIMENSIONS}
    for i in range(sizes["temperature"]):
        temperature = _dimension_value("temperature", spec.temperature, i)
        for j in range(sizes["top_p"]):
            top_p = _dimension_value("top_p", spec.top_p, j)
            for k in range(sizes["top_k"]):
                top_k = _dimension_value("top_k", spec.top_k, k)
                for m in range(sizes["max_tokens"]):
                    yield ParameterPoint(
                        temperature=temperature,
                        top_p=top_p,
                        top_k=top_k,
                        max_tokens=_dimension_value("max_tokens", spec.max_tokens, m),
                        model=spec.model,
                    )


def generate_points(spec: GridSpec, max_responses: Optional[int] = None) -> list[ParameterPoint]:
    """Enumerate parameter points in sweep order.

    max_responses keeps the first N points; earlier elements never change and
    points past the cap are never built.
    """
    if max_responses is not None and max_responses < 0:
        raise ExperimentValidationError("max_responses must not be negative")
    # Validate every dimension up front, even for an empty slice.
    count_points(spec)
    return list(islice(iter_points(spec), max_responses))
