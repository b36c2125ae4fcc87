"""Tests for consensus rules — quorum, median, categorical pass-through."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from market_integrity.models import Quote
from market_integrity.resolution import min_sources, resolve_categorical, resolve_numeric

NOW = datetime(2026, 1, 5, tzinfo=timezone.utc)


def _q(value, source="A", healthy=True, confidence=0.95):
    return Quote(
        market_id="m",
        value=value,
        source=source,
        confidence=confidence,
        observed_at=NOW,
        healthy=healthy,
    )


class TestMinSources:
    @pytest.mark.parametrize("total,expected", [
        (0, 1),
        (1, 1),
        (2, 2),
        (3, 2),
        (4, 3),
        (5, 3),
        (10, 6),
    ])
    def test_sixty_percent_quorum(self, total, expected):
        assert min_sources(total) == expected

    def test_custom_fraction(self):
        assert min_sources(4, 1.0) == 4
        assert min_sources(4, 0.25) == 1

    def test_product_just_above_integer(self):
        assert 100 * 0.07 > 7
        assert min_sources(100, 0.07) == 7


class TestResolveNumeric:
    def test_median_odd(self):
        d = resolve_numeric([_q(100.0), _q(102.0, "B"), _q(105.0, "C")], total_adapters=3)
        assert d.is_resolved
        assert d.value == 102.0
        assert d.confidence == pytest.approx(1.5)

    def test_median_even(self):
        d = resolve_numeric([_q(100.0), _q(102.0, "B")], total_adapters=2)
        assert d.value == 101.0
        assert d.confidence == pytest.approx(1.0)

    def test_quorum_not_met(self):
        # 2 adapters need 2 healthy quotes; one is not enough whatever it says
        assert resolve_numeric([_q(100.0)], total_adapters=2).status == "RETRY"

    def test_unhealthy_quotes_ignored(self):
        quotes = [_q(100.0), _q(500.0, "B", healthy=False), _q(104.0, "C")]
        d = resolve_numeric(quotes, total_adapters=3)
        assert d.value == 102.0
        assert d.confidence == pytest.approx(1.0)

    def test_string_quotes_ignored(self):
        d = resolve_numeric([_q(100.0), _q("Lakers", "B")], total_adapters=2)
        assert d.status == "RETRY"

    def test_no_quotes(self):
        assert resolve_numeric([], total_adapters=3).status == "RETRY"

    def test_single_adapter(self):
        d = resolve_numeric([_q(42.0)], total_adapters=1)
        assert d.value == 42.0
        assert d.confidence == 1.0


class TestResolveCategorical:
    def test_first_healthy_string_wins(self):
        d = resolve_categorical([_q("Lakers", "ESPN"), _q("Celtics", "Odds", confidence=0.7)])
        assert d.value == "Lakers"
        assert d.confidence == 0.95

    def test_skips_unhealthy(self):
        d = resolve_categorical([_q("Lakers", "ESPN", healthy=False), _q("Celtics", "Odds", confidence=0.7)])
        assert d.value == "Celtics"
        assert d.confidence == 0.7

    def test_skips_zero_confidence(self):
        d = resolve_categorical([_q("Lakers", "ESPN", confidence=0.0)])
        assert d.status == "RETRY"

    def test_skips_numeric(self):
        assert resolve_categorical([_q(1.0)]).status == "RETRY"

    def test_empty(self):
        assert resolve_categorical([]).status == "RETRY"
