"""Anomaly detection models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["low", "medium", "high", "critical"]

INSUFFICIENT_HISTORY = "Insufficient data history"


@dataclass(frozen=True)
class DataPoint:
    """A single observed value held in a source's history."""

    value: float
    observed_at: datetime
    source_key: str


class AnomalyScore(BaseModel):
    value: float = Field(ge=0.0, le=1.0)
    severity: Severity = "low"
    reasons: list[str] = Field(default_factory=list)


class AnomalyMetadata(BaseModel):
    data_count: int
    mean: float | None = None
    std_dev: float | None = None
    z_score: float | None = None


class AnomalyResult(BaseModel):
    """Score for one observation against its source's recent history."""

    is_anomaly: bool
    score: AnomalyScore
    metadata: AnomalyMetadata


class SourceStats(BaseModel):
    count: int
    oldest: datetime
    newest: datetime
