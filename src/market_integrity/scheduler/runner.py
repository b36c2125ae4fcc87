"""Scheduler — fixed-cadence tick that resolves every active market."""

from __future__ import annotations

import asyncio
import signal

import structlog

from market_integrity.config.loader import load_config
from market_integrity.config.schema import AppConfig, SchedulerConfig
from market_integrity.db.engine import dispose_engine
from market_integrity.logging.setup import setup_logging
from market_integrity.models import ActiveMarket, ResolutionDecision
from market_integrity.resolution import ResolutionEngine
from market_integrity.scheduler.backoff import RetryTracker
from market_integrity.scheduler.registry import MarketRegistry
from market_integrity.scheduler.sink import DecisionSink, LoggingDecisionSink

log = structlog.get_logger("scheduler")


class Scheduler:
    """Dispatches one resolution per active market on every tick.

    Resolutions run as tasks on a semaphore-bounded pool, each under a
    per-market deadline. A tick never waits for earlier work: a market whose
    previous resolution is still running is skipped rather than queued
    twice, and markets backing off after RETRY are skipped until due.
    """

    def __init__(
        self,
        registry: MarketRegistry,
        engine: ResolutionEngine,
        sink: DecisionSink | None = None,
        tick_interval_s: float = 10.0,
        max_concurrency: int = 8,
        market_deadline_s: float = 15.0,
        retry: RetryTracker | None = None,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.sink = sink or LoggingDecisionSink()
        self.tick_interval_s = tick_interval_s
        self.market_deadline_s = market_deadline_s
        self.retry = retry or RetryTracker()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight: dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls,
        config: SchedulerConfig,
        registry: MarketRegistry,
        engine: ResolutionEngine,
        sink: DecisionSink | None = None,
    ) -> Scheduler:
        return cls(
            registry,
            engine,
            sink=sink,
            tick_interval_s=config.tick_interval_s,
            max_concurrency=config.max_concurrent_resolutions,
            market_deadline_s=config.market_deadline_s,
            retry=RetryTracker(
                base_s=config.retry_backoff_base_s,
                max_s=config.retry_backoff_max_s,
                max_attempts=config.max_retry_attempts,
            ),
        )

    @property
    def in_flight(self) -> set[str]:
        return set(self._in_flight)

    async def tick(self) -> list[asyncio.Task]:
        """Snapshot the registry and dispatch due markets; returns the new tasks."""
        markets = self.registry.list_active()
        self.retry.retain({m.market_id for m in markets})

        dispatched: list[asyncio.Task] = []
        for market in markets:
            market_id = market.market_id
            if market_id in self._in_flight:
                log.debug("resolution_still_running", market_id=market_id)
                continue
            if not self.retry.is_due(market_id):
                continue
            task = asyncio.create_task(self._resolve(market), name=f"resolve:{market_id}")
            self._in_flight[market_id] = task
            task.add_done_callback(lambda _t, mid=market_id: self._in_flight.pop(mid, None))
            dispatched.append(task)

        if dispatched:
            log.debug("tick_dispatched", markets=len(dispatched), active=len(markets))
        return dispatched

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Tick until *stop* is set, then wait for in-flight resolutions."""
        stop = stop or asyncio.Event()
        log.info("scheduler_started", tick_interval_s=self.tick_interval_s)

        while not stop.is_set():
            try:
                await self.tick()
            except Exception:
                log.exception("tick_error")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.tick_interval_s)
            except asyncio.TimeoutError:
                pass

        await self.drain()
        log.info("scheduler_stopped")

    async def drain(self) -> None:
        """Wait for every in-flight resolution to finish."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    # ── Per-market work ───────────────────────────────────────

    async def _resolve(self, market: ActiveMarket) -> ResolutionDecision:
        async with self._semaphore:
            try:
                decision = await asyncio.wait_for(
                    self.engine.resolve_market(market.market_id, market.category),
                    timeout=self.market_deadline_s,
                )
            except asyncio.TimeoutError:
                log.warning(
                    "resolution_deadline_exceeded",
                    market_id=market.market_id,
                    deadline_s=self.market_deadline_s,
                )
                decision = ResolutionDecision.retry()
            except Exception:
                log.exception("resolution_error", market_id=market.market_id)
                decision = ResolutionDecision.retry()

        if decision.is_resolved:
            self.retry.reset(market.market_id)
        elif self.retry.record_retry(market.market_id):
            await self._call_sink(self.sink.stalled, market, self.retry.attempts(market.market_id))

        await self._call_sink(self.sink.commit, market, decision)
        return decision

    async def _call_sink(self, hook, market: ActiveMarket, payload) -> None:
        try:
            await hook(market, payload)
        except Exception:
            log.exception("decision_sink_error", market_id=market.market_id, hook=hook.__name__)


async def run_loop(config: AppConfig) -> None:
    """Main scheduler loop — wire services from config and tick until signalled."""
    from market_integrity.services import build_services

    services = build_services(config)
    scheduler = Scheduler.from_config(config.scheduler, services.registry, services.engine)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    log.info(
        "oracle_service_started",
        markets=[m.market_id for m in services.registry.list_active()],
        categories=sorted(c.value for c in services.engine.adapters),
    )
    try:
        await scheduler.run(stop)
    finally:
        await services.engine.close()
        dispose_engine()


def main(config_path: str | None = None) -> None:
    """Entry point — load config, set up logging, run the async loop."""
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_format=config.logging.format, service="scheduler")
    asyncio.run(run_loop(config))
