"""Tests for the AnomalyDetector — thin history, checks, severities, windowing."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from market_integrity.config.schema import AnomalyConfig
from market_integrity.detection import AnomalyDetector, severity_for


@pytest.fixture
def detector(clock):
    return AnomalyDetector(clock=clock)


def _seed(detector, key, values):
    for v in values:
        detector.add_data_point(key, v)


class TestThinHistory:
    def test_unseen_source(self, detector):
        result = detector.detect_anomaly("BTC", 100.0)
        assert result.is_anomaly is False
        assert result.score.value == 0.0
        assert result.score.reasons == ["Insufficient data history"]
        assert result.metadata.data_count == 0

    @pytest.mark.parametrize("value", [-1e9, 0.0, 100.0, 1e12])
    def test_below_min_points_never_anomalous(self, detector, value):
        _seed(detector, "BTC", [100.0, 101.0, 99.0, 100.0])
        result = detector.detect_anomaly("BTC", value)
        assert result.is_anomaly is False
        assert result.score.reasons == ["Insufficient data history"]
        assert result.metadata.data_count == 4


class TestChecks:
    HISTORY = [100.0, 101.0, 99.0, 100.0, 102.0]

    def test_normal_value(self, detector):
        _seed(detector, "BTC", self.HISTORY)
        result = detector.detect_anomaly("BTC", 101.0)
        assert result.is_anomaly is False
        assert result.score.value == 0.0
        assert result.score.reasons == []
        assert result.metadata.mean == pytest.approx(100.4)
        assert result.metadata.std_dev == pytest.approx(1.0198, abs=1e-4)

    def test_spike_fires_all_three(self, detector):
        _seed(detector, "BTC", self.HISTORY)
        result = detector.detect_anomaly("BTC", 200.0)
        assert result.is_anomaly is True
        assert result.score.value == 1.0
        assert result.score.severity == "critical"
        reasons = result.score.reasons
        assert reasons[0].startswith("Z-score anomaly: ")
        assert reasons[1] == "Price spike: 96.08%"
        assert reasons[2] == "Consistency issue: Outside historical range [99.00, 102.00]"

    def test_dispersion_and_step_only_is_medium(self, detector):
        # Inside the historical band, so consistency stays quiet
        _seed(detector, "BTC", [100.0, 130.0, 100.0, 130.0, 100.0])
        result = detector.detect_anomaly("BTC", 160.0)
        assert result.score.value == 0.7
        assert result.score.severity == "medium"
        assert result.is_anomaly is True
        assert len(result.score.reasons) == 2

    def test_negative_value(self, detector):
        _seed(detector, "BTC", [100.0] * 5)
        result = detector.detect_anomaly("BTC", -5.0)
        assert "Consistency issue: Negative value" in result.score.reasons
        assert result.score.severity == "critical"

    def test_flat_history_small_move_ignored(self, detector):
        _seed(detector, "BTC", [100.0] * 5)
        result = detector.detect_anomaly("BTC", 105.0)
        assert result.score.value == 0.0
        assert result.metadata.std_dev == 0.0
        assert result.metadata.z_score == 0.0

    def test_flat_history_ten_percent_rule(self, detector):
        _seed(detector, "BTC", [100.0] * 5)
        result = detector.detect_anomaly("BTC", 115.0)
        # >10% from a flat mean, and outside the ±10% band
        assert result.score.value == 0.7
        assert result.score.reasons[0] == "Z-score anomaly: 0.00"
        assert result.score.reasons[1].startswith("Consistency issue")

    def test_step_from_zero(self, detector):
        _seed(detector, "X", [0.0] * 5)
        result = detector.detect_anomaly("X", 1.0)
        assert "Price spike: inf%" in result.score.reasons

    def test_zero_after_zero_is_quiet(self, detector):
        _seed(detector, "X", [0.0] * 5)
        assert detector.detect_anomaly("X", 0.0).score.value == 0.0

    def test_dispersion_monotone_in_distance(self, detector):
        _seed(detector, "BTC", self.HISTORY)
        flagged = [
            any(r.startswith("Z-score") for r in detector.detect_anomaly("BTC", 100.4 + d).score.reasons)
            for d in [0.0, 1.0, 2.0, 3.0, 3.1, 4.0, 10.0, 100.0]
        ]
        # Once the z-score fires it keeps firing further from the mean
        assert flagged == sorted(flagged)
        assert flagged[-1] is True

    def test_detect_is_read_only(self, detector):
        _seed(detector, "BTC", self.HISTORY)
        detector.detect_anomaly("BTC", 500.0)
        assert detector.get_stats("BTC").count == 5

    def test_custom_thresholds(self, clock):
        detector = AnomalyDetector.from_config(
            AnomalyConfig(min_data_points=2, price_change_threshold=5.0),
            clock=clock,
        )
        _seed(detector, "BTC", [100.0, 100.5])
        result = detector.detect_anomaly("BTC", 106.0)
        assert any(r.startswith("Price spike") for r in result.score.reasons)


class TestSeverity:
    @pytest.mark.parametrize("score,expected", [
        (0.0, "low"),
        (0.5, "low"),
        (0.51, "medium"),
        (0.7, "medium"),
        (0.71, "high"),
        (0.9, "high"),
        (0.91, "critical"),
        (1.0, "critical"),
    ])
    def test_bands(self, score, expected):
        assert severity_for(score) == expected


class TestWindow:
    def test_old_points_purged_on_add(self, detector, clock):
        detector.add_data_point("BTC", 100.0, clock.now - timedelta(hours=25))
        assert detector.get_stats("BTC") is None

    def test_expired_points_absent_on_read(self, detector, clock):
        _seed(detector, "BTC", [100.0] * 5)
        clock.advance(24 * 3600 + 1)
        assert detector.get_stats("BTC") is None
        assert detector.get_stats("BTC") is None
        assert detector.detect_anomaly("BTC", 100.0).metadata.data_count == 0

    def test_repeated_reads_identical(self, detector, clock):
        detector.add_data_point("BTC", 100.0, clock.now - timedelta(hours=23))
        detector.add_data_point("BTC", 101.0)
        clock.advance(2 * 3600)
        first = detector.get_stats("BTC")
        second = detector.get_stats("BTC")
        assert first == second
        assert first.count == 1

    def test_stats(self, detector, clock):
        start = clock.now
        detector.add_data_point("BTC", 100.0)
        clock.advance(60)
        detector.add_data_point("BTC", 101.0)
        stats = detector.get_stats("BTC")
        assert stats.count == 2
        assert stats.oldest == start
        assert stats.newest == start + timedelta(seconds=60)

    def test_clear_history(self, detector):
        _seed(detector, "BTC", [1.0])
        _seed(detector, "ETH", [2.0])
        detector.clear_history("BTC")
        assert detector.get_stats("BTC") is None
        assert detector.get_stats("ETH").count == 1
        detector.clear_history()
        assert detector.get_stats("ETH") is None

    def test_concurrent_writers(self, detector):
        def write(n):
            for i in range(250):
                detector.add_data_point("BTC", float(n * 1000 + i))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(write, range(8)))
        assert detector.get_stats("BTC").count == 2000
