"""Service wiring shared by the scheduler process and the API process."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from market_integrity.adapters import build_adapters
from market_integrity.config.schema import AppConfig
from market_integrity.db.engine import create_tables, get_session_factory, init_engine
from market_integrity.detection import AnomalyDetector, FraudDetector
from market_integrity.resolution import ResolutionEngine
from market_integrity.scheduler.registry import InMemoryMarketRegistry
from market_integrity.screening import AlertStore, TradeScreener

log = structlog.get_logger("services")


@dataclass
class Services:
    config: AppConfig
    anomaly: AnomalyDetector
    fraud: FraudDetector
    screener: TradeScreener
    engine: ResolutionEngine
    registry: InMemoryMarketRegistry
    alerts: AlertStore | None = None


def build_services(
    config: AppConfig,
    alerts: AlertStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Build detectors, adapters, engine and registry from *config*.

    When *alerts* is not given and the database is enabled, the engine is
    initialised and the alert tables are created.
    """
    import market_integrity.adapters.sources  # noqa: F401 — trigger @register decorators

    if alerts is None and config.database.enabled:
        engine = init_engine(config.database.url)
        create_tables(engine)
        alerts = AlertStore(get_session_factory())
        log.info("alert_store_ready")

    anomaly = AnomalyDetector.from_config(config.anomaly)
    fraud = FraudDetector.from_config(config.fraud)
    adapters = build_adapters(
        config.adapters,
        timeout_s=config.resolution.adapter_timeout_s,
        transport=transport,
    )
    return Services(
        config=config,
        anomaly=anomaly,
        fraud=fraud,
        screener=TradeScreener(fraud, anomaly, config.screening, alerts),
        engine=ResolutionEngine.from_config(config.resolution, adapters, anomaly, alerts),
        registry=InMemoryMarketRegistry.from_config(config.markets),
        alerts=alerts,
    )
