"""Consensus rules — pure functions from quotes to a resolution decision."""

from __future__ import annotations

import math
from collections.abc import Sequence
from statistics import median

from market_integrity.models import Quote, ResolutionDecision


def min_sources(total_adapters: int, quorum_fraction: float = 0.6) -> int:
    """Quorum size: ``max(1, ceil(quorum_fraction * total_adapters))``."""
    # round() keeps 100 * 0.07 (7.000000000000001) from ceiling to 8
    return max(1, math.ceil(round(total_adapters * quorum_fraction, 9)))


def healthy_numeric_values(quotes: Sequence[Quote]) -> list[float]:
    return [
        q.value for q in quotes
        if q.healthy and q.is_numeric and math.isfinite(q.value)
    ]


def resolve_numeric(
    quotes: Sequence[Quote],
    total_adapters: int,
    quorum_fraction: float = 0.6,
) -> ResolutionDecision:
    """Median of healthy numeric quotes once the quorum is met.

    Confidence is ``healthy / min_sources`` and is deliberately not capped,
    so corroboration beyond the quorum shows up as a value above 1.
    """
    required = min_sources(total_adapters, quorum_fraction)
    values = healthy_numeric_values(quotes)
    if len(values) < required:
        return ResolutionDecision.retry()
    return ResolutionDecision.resolved(
        value=float(median(values)),
        confidence=len(values) / required,
    )


def resolve_categorical(quotes: Sequence[Quote]) -> ResolutionDecision:
    """First healthy string quote, in adapter order.

    Single-source pass-through: no cross-adapter agreement is required.
    """
    for q in quotes:
        if q.healthy and isinstance(q.value, str) and q.confidence > 0:
            return ResolutionDecision.resolved(value=q.value, confidence=q.confidence)
    return ResolutionDecision.retry()
