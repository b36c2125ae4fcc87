"""Tests for the scheduler — dispatch, deadlines, retry backoff, registry, sinks."""

from __future__ import annotations

import asyncio
import json

import pytest

from market_integrity.config.schema import MarketConfig, SchedulerConfig
from market_integrity.logging import setup_logging
from market_integrity.models import ActiveMarket, MarketCategory, ResolutionDecision
from market_integrity.scheduler import (
    InMemoryMarketRegistry,
    LoggingDecisionSink,
    RetryTracker,
    Scheduler,
)


class FakeEngine:
    """Stands in for ResolutionEngine; returns canned decisions per market."""

    def __init__(self, decisions=None, default=None, delay=0.0, error=None, gate=None):
        self.decisions = decisions or {}
        self.default = default or ResolutionDecision.resolved(1.0, 1.0)
        self.delay = delay
        self.error = error
        self.gate = gate
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def resolve_market(self, market_id, category):
        self.calls.append(market_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.decisions.get(market_id, self.default)
        finally:
            self.active -= 1


class RecordingSink:
    def __init__(self, fail=False):
        self.commits: list[tuple[str, ResolutionDecision]] = []
        self.stalls: list[tuple[str, int]] = []
        self.fail = fail

    async def commit(self, market, decision):
        self.commits.append((market.market_id, decision))
        if self.fail:
            raise RuntimeError("settlement store down")

    async def stalled(self, market, attempts):
        self.stalls.append((market.market_id, attempts))


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _registry(*market_ids, category=MarketCategory.CRYPTO):
    return InMemoryMarketRegistry([ActiveMarket(market_id=m, category=category) for m in market_ids])


def _tick(scheduler):
    async def go():
        await scheduler.tick()
        await scheduler.drain()
    asyncio.run(go())


@pytest.fixture(autouse=True)
def _quiet_logs():
    setup_logging(level="CRITICAL", log_format="json")


# ── Scheduler ─────────────────────────────────────────────────


class TestTick:
    def test_resolves_every_active_market(self):
        async def go():
            engine = FakeEngine()
            sink = RecordingSink()
            scheduler = Scheduler(_registry("A", "B"), engine, sink=sink)
            await scheduler.tick()
            await scheduler.drain()
            return engine, sink

        engine, sink = asyncio.run(go())
        assert sorted(engine.calls) == ["A", "B"]
        assert sorted(m for m, _ in sink.commits) == ["A", "B"]
        assert all(d.is_resolved for _, d in sink.commits)

    def test_inactive_markets_skipped(self):
        async def go():
            registry = _registry("A", "B")
            registry.deactivate("B")
            engine = FakeEngine()
            scheduler = Scheduler(registry, engine, sink=RecordingSink())
            await scheduler.tick()
            await scheduler.drain()
            return engine

        assert asyncio.run(go()).calls == ["A"]

    def test_in_flight_market_not_dispatched_twice(self):
        async def go():
            gate = asyncio.Event()
            engine = FakeEngine(gate=gate)
            scheduler = Scheduler(_registry("A"), engine, sink=RecordingSink(), market_deadline_s=5)
            first = await scheduler.tick()
            await asyncio.sleep(0)
            second = await scheduler.tick()
            in_flight = scheduler.in_flight
            gate.set()
            await scheduler.drain()
            return first, second, in_flight, engine, scheduler

        first, second, in_flight, engine, scheduler = asyncio.run(go())
        assert len(first) == 1
        assert second == []
        assert in_flight == {"A"}
        assert engine.calls == ["A"]
        assert scheduler.in_flight == set()

    def test_concurrency_bounded(self):
        async def go():
            engine = FakeEngine(delay=0.02)
            scheduler = Scheduler(
                _registry(*[f"M{i}" for i in range(6)]),
                engine,
                sink=RecordingSink(),
                max_concurrency=2,
            )
            await scheduler.tick()
            await scheduler.drain()
            return engine

        engine = asyncio.run(go())
        assert len(engine.calls) == 6
        assert engine.max_active <= 2

    def test_deadline_exceeded_becomes_retry(self):
        async def go():
            sink = RecordingSink()
            scheduler = Scheduler(_registry("A"), FakeEngine(delay=1.0), sink=sink, market_deadline_s=0.05)
            await scheduler.tick()
            await scheduler.drain()
            return sink, scheduler

        sink, scheduler = asyncio.run(go())
        assert sink.commits[0][1].status == "RETRY"
        assert scheduler.retry.attempts("A") == 1

    def test_slow_market_does_not_stall_others(self):
        async def go():
            sink = RecordingSink()
            engine = FakeEngine(delay=0.0)
            slow = FakeEngine(delay=1.0)

            class Router:
                async def resolve_market(self, market_id, category):
                    target = slow if market_id == "slow" else engine
                    return await target.resolve_market(market_id, category)

            scheduler = Scheduler(_registry("slow", "fast"), Router(), sink=sink, market_deadline_s=0.1)
            await scheduler.tick()
            await asyncio.sleep(0.05)
            committed_early = [m for m, _ in sink.commits]
            await scheduler.drain()
            return committed_early

        assert asyncio.run(go()) == ["fast"]

    def test_engine_exception_becomes_retry(self):
        sink = RecordingSink()
        scheduler = Scheduler(_registry("A"), FakeEngine(error=RuntimeError("boom")), sink=sink)
        _tick(scheduler)
        assert sink.commits[0][1].status == "RETRY"

    def test_sink_failure_contained(self):
        sink = RecordingSink(fail=True)
        scheduler = Scheduler(_registry("A"), FakeEngine(), sink=sink)
        _tick(scheduler)
        assert len(sink.commits) == 1

    def test_registry_failure_does_not_stop_run(self):
        class BrokenRegistry:
            def __init__(self):
                self.calls = 0

            def list_active(self):
                self.calls += 1
                raise RuntimeError("registry sync failed")

        async def go():
            registry = BrokenRegistry()
            scheduler = Scheduler(registry, FakeEngine(), sink=RecordingSink(), tick_interval_s=0.01)
            stop = asyncio.Event()
            task = asyncio.create_task(scheduler.run(stop))
            await asyncio.sleep(0.05)
            stop.set()
            await task
            return registry

        assert asyncio.run(go()).calls >= 2


class TestRetryFlow:
    def test_retry_backs_off_until_due(self):
        mono = FakeMonotonic()
        retry = RetryTracker(base_s=10, max_s=300, max_attempts=60, clock=mono)
        engine = FakeEngine(default=ResolutionDecision.retry())
        scheduler = Scheduler(_registry("A"), engine, sink=RecordingSink(), retry=retry)

        _tick(scheduler)
        _tick(scheduler)
        assert engine.calls == ["A"]

        mono.now += 10
        _tick(scheduler)
        assert engine.calls == ["A", "A"]

    def test_resolved_resets_backoff(self):
        mono = FakeMonotonic()
        retry = RetryTracker(base_s=10, clock=mono)
        engine = FakeEngine(default=ResolutionDecision.retry())
        scheduler = Scheduler(_registry("A"), engine, sink=RecordingSink(), retry=retry)

        _tick(scheduler)
        assert retry.attempts("A") == 1
        engine.default = ResolutionDecision.resolved(5.0, 1.0)
        mono.now += 10
        _tick(scheduler)
        assert retry.attempts("A") == 0
        assert retry.is_due("A")

    def test_stalled_reported_once(self):
        mono = FakeMonotonic()
        retry = RetryTracker(base_s=1, max_s=1, max_attempts=2, clock=mono)
        sink = RecordingSink()
        engine = FakeEngine(default=ResolutionDecision.retry())
        scheduler = Scheduler(_registry("A"), engine, sink=sink, retry=retry)

        for _ in range(5):
            _tick(scheduler)
            mono.now += 1

        assert engine.calls == ["A", "A"]
        assert sink.stalls == [("A", 2)]
        assert retry.is_parked("A")

    def test_removed_market_forgets_retry_state(self):
        mono = FakeMonotonic()
        retry = RetryTracker(base_s=10, clock=mono)
        registry = _registry("A")
        scheduler = Scheduler(registry, FakeEngine(default=ResolutionDecision.retry()), sink=RecordingSink(), retry=retry)

        _tick(scheduler)
        assert retry.attempts("A") == 1
        registry.remove("A")
        _tick(scheduler)
        assert retry.attempts("A") == 0

    def test_from_config(self):
        cfg = SchedulerConfig(max_retry_attempts=3, retry_backoff_base_s=2, market_deadline_s=4)
        scheduler = Scheduler.from_config(cfg, _registry(), FakeEngine())
        assert scheduler.retry.max_attempts == 3
        assert scheduler.retry.base_s == 2
        assert scheduler.market_deadline_s == 4
        assert isinstance(scheduler.sink, LoggingDecisionSink)


# ── RetryTracker ──────────────────────────────────────────────


class TestRetryTracker:
    def test_unknown_market_due(self):
        assert RetryTracker().is_due("A")

    def test_exponential_delay_capped(self):
        mono = FakeMonotonic()
        retry = RetryTracker(base_s=10, max_s=35, clock=mono)
        delays = []
        for _ in range(4):
            start = mono.now
            retry.record_retry("A")
            delays.append(retry._states["A"].next_due - start)
        assert delays == [10, 20, 35, 35]

    def test_record_retry_parks_exactly_once(self):
        retry = RetryTracker(max_attempts=2, clock=FakeMonotonic())
        assert retry.record_retry("A") is False
        assert retry.record_retry("A") is True
        assert retry.record_retry("A") is False
        assert retry.is_parked("A")
        assert not retry.is_due("A")

    def test_reset(self):
        retry = RetryTracker(max_attempts=1, clock=FakeMonotonic())
        retry.record_retry("A")
        retry.reset("A")
        assert not retry.is_parked("A")
        assert retry.is_due("A")

    def test_retain(self):
        retry = RetryTracker(clock=FakeMonotonic())
        retry.record_retry("A")
        retry.record_retry("B")
        retry.retain({"B"})
        assert retry.attempts("A") == 0
        assert retry.attempts("B") == 1


# ── Registry ──────────────────────────────────────────────────


class TestInMemoryMarketRegistry:
    def test_from_config(self):
        registry = InMemoryMarketRegistry.from_config([
            MarketConfig(market_id="BTC-USDT", category="CRYPTO"),
            MarketConfig(market_id="old", category="WEATHER", active=False),
        ])
        assert [m.market_id for m in registry.list_active()] == ["BTC-USDT"]

    def test_register_platform_category(self):
        registry = InMemoryMarketRegistry()
        market = registry.register("race-1", "politics")
        assert market.category is MarketCategory.ELECTION
        assert registry.list_active() == [market]

    def test_register_unknown_category(self):
        registry = InMemoryMarketRegistry()
        assert registry.register("film-1", "entertainment") is None
        assert registry.list_active() == []

    def test_deactivate_and_remove(self):
        registry = _registry("A", "B", "C")
        registry.deactivate("A")
        registry.remove("B")
        registry.deactivate("missing")
        assert [m.market_id for m in registry.list_active()] == ["C"]

    def test_snapshot_isolated_from_updates(self):
        registry = _registry("A")
        snapshot = registry.list_active()
        registry.register("B", MarketCategory.CRYPTO)
        assert [m.market_id for m in snapshot] == ["A"]


# ── Sinks ─────────────────────────────────────────────────────


class TestLoggingDecisionSink:
    def test_logs_resolved_and_stalled(self, capsys):
        setup_logging(level="INFO", log_format="json")
        sink = LoggingDecisionSink()
        market = ActiveMarket(market_id="BTC-USDT", category=MarketCategory.CRYPTO)

        async def go():
            await sink.commit(market, ResolutionDecision.resolved(101.0, 1.5))
            await sink.commit(market, ResolutionDecision.retry())
            await sink.stalled(market, 60)

        asyncio.run(go())
        lines = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        assert [line["event"] for line in lines] == ["market_resolved", "market_retry", "market_resolution_stalled"]
        assert lines[0]["value"] == 101.0
        assert lines[0]["confidence"] == 1.5
        assert lines[2]["attempts"] == 60
        assert lines[2]["level"] == "warning"
