"""AnomalyDetector — time-windowed statistical scoring of value streams.

Each source key (a price feed, or ``"{source}:{market_id}"`` for oracle
quotes) keeps its own history of recent observations. A new value is scored
by three independent checks against that history:

    dispersion   0.4   z-score beyond ``std_dev_threshold``
    step-change  0.3   percentage move from the last value
    consistency  0.3   negative, non-finite, or outside the historical band

The contributions are summed and capped at 1.0. Anything above 0.5 is an
anomaly.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import numpy as np
import structlog

from market_integrity.config.schema import AnomalyConfig
from market_integrity.models.anomaly import (
    INSUFFICIENT_HISTORY,
    AnomalyMetadata,
    AnomalyResult,
    AnomalyScore,
    DataPoint,
    Severity,
    SourceStats,
)

log = structlog.get_logger("anomaly_detector")

DISPERSION_WEIGHT = 0.4
STEP_CHANGE_WEIGHT = 0.3
CONSISTENCY_WEIGHT = 0.3

# Below this (relative to the mean) a std dev is float noise on a flat series
_FLAT_EPSILON = 1e-12


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def severity_for(score: float) -> Severity:
    """Map an anomaly score onto its severity band."""
    if score > 0.9:
        return "critical"
    if score > 0.7:
        return "high"
    if score > 0.5:
        return "medium"
    return "low"


class AnomalyDetector:
    """Per-source rolling history with z-score, spike and range checks.

    Thread-safe: every read and write of the history map happens under one
    lock, and expired points are purged inside the same critical section
    as the append that triggers the purge.
    """

    def __init__(
        self,
        std_dev_threshold: float = 3.0,
        min_data_points: int = 5,
        time_window_s: float = 24 * 60 * 60,
        price_change_threshold: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.std_dev_threshold = std_dev_threshold
        self.min_data_points = min_data_points
        self.time_window = timedelta(seconds=time_window_s)
        self.price_change_threshold = price_change_threshold
        self._clock = clock
        self._history: dict[str, list[DataPoint]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: AnomalyConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> AnomalyDetector:
        return cls(
            std_dev_threshold=config.std_dev_threshold,
            min_data_points=config.min_data_points,
            time_window_s=config.time_window_s,
            price_change_threshold=config.price_change_threshold,
            clock=clock,
        )

    # ── Public API ────────────────────────────────────────────

    def add_data_point(
        self,
        source_key: str,
        value: float,
        observed_at: datetime | None = None,
    ) -> None:
        """Append an observation and drop points older than the window."""
        point = DataPoint(
            value=float(value),
            observed_at=observed_at or self._clock(),
            source_key=source_key,
        )
        with self._lock:
            history = self._history.setdefault(source_key, [])
            history.append(point)
            cutoff = self._clock() - self.time_window
            kept = [p for p in history if p.observed_at > cutoff]
            if kept:
                self._history[source_key] = kept
            else:
                del self._history[source_key]

    def detect_anomaly(self, source_key: str, value: float) -> AnomalyResult:
        """Score *value* against the source's history without recording it."""
        with self._lock:
            history = self._live_history(source_key)

        if len(history) < self.min_data_points:
            return AnomalyResult(
                is_anomaly=False,
                score=AnomalyScore(value=0.0, severity="low", reasons=[INSUFFICIENT_HISTORY]),
                metadata=AnomalyMetadata(data_count=len(history)),
            )

        value = float(value)
        values = np.array([p.value for p in history], dtype=np.float64)
        reasons: list[str] = []
        score = 0.0

        flagged, mean, std_dev, z_score = self._check_dispersion(values, value)
        if flagged:
            reasons.append(f"Z-score anomaly: {z_score:.2f}")
            score += DISPERSION_WEIGHT

        flagged, change_pct = self._check_step_change(history[-1].value, value)
        if flagged:
            reasons.append(f"Price spike: {change_pct:.2f}%")
            score += STEP_CHANGE_WEIGHT

        problem = self._check_consistency(values, value)
        if problem is not None:
            reasons.append(f"Consistency issue: {problem}")
            score += CONSISTENCY_WEIGHT

        # Rounded so that 0.4 + 0.3 lands on 0.7 ("medium"); unrounded float
        # addition gives 0.7000000000000001, which would read as "high"
        score = round(min(score, 1.0), 10)
        return AnomalyResult(
            is_anomaly=score > 0.5,
            score=AnomalyScore(value=score, severity=severity_for(score), reasons=reasons),
            metadata=AnomalyMetadata(
                data_count=len(history),
                mean=mean,
                std_dev=std_dev,
                z_score=z_score,
            ),
        )

    def get_stats(self, source_key: str) -> SourceStats | None:
        """Count and time span of the live history, or None when empty."""
        with self._lock:
            history = self._live_history(source_key)
        if not history:
            return None
        stamps = [p.observed_at for p in history]
        return SourceStats(count=len(history), oldest=min(stamps), newest=max(stamps))

    def clear_history(self, source_key: str | None = None) -> None:
        """Forget one source's history, or every source when *source_key* is None."""
        with self._lock:
            if source_key is None:
                self._history.clear()
            else:
                self._history.pop(source_key, None)

    # ── Checks ────────────────────────────────────────────────

    def _check_dispersion(
        self,
        values: np.ndarray,
        value: float,
    ) -> tuple[bool, float, float, float]:
        """Return (flagged, mean, population std dev, z-score)."""
        mean = float(np.mean(values))
        std_dev = float(np.std(values))
        deviation = abs(value - mean)

        if std_dev <= _FLAT_EPSILON * max(1.0, abs(mean)):
            return deviation > mean * 0.1, mean, 0.0, 0.0

        z_score = deviation / std_dev
        return z_score > self.std_dev_threshold, mean, std_dev, z_score

    def _check_step_change(self, last_value: float, value: float) -> tuple[bool, float]:
        """Return (flagged, absolute percentage change from the last value)."""
        if last_value == 0:
            change_pct = 0.0 if value == 0 else math.inf
        else:
            change_pct = abs((value - last_value) / last_value) * 100
        return change_pct > self.price_change_threshold, change_pct

    @staticmethod
    def _check_consistency(values: np.ndarray, value: float) -> str | None:
        """Return a description of the inconsistency, or None if plausible."""
        if value < 0:
            return "Negative value"
        if not math.isfinite(value):
            return "Non-finite value"

        low = float(np.min(values))
        high = float(np.max(values))
        band = (high - low) or high * 0.1
        if value < low - band or value > high + band:
            return f"Outside historical range [{low:.2f}, {high:.2f}]"
        return None

    # ── Internals ─────────────────────────────────────────────

    def _live_history(self, source_key: str) -> list[DataPoint]:
        """Points still inside the window. Caller must hold the lock."""
        cutoff = self._clock() - self.time_window
        return [p for p in self._history.get(source_key, ()) if p.observed_at > cutoff]
