"""Resolution scheduler — registry, retry policy, decision sinks and the tick loop."""

from market_integrity.scheduler.backoff import RetryTracker
from market_integrity.scheduler.registry import InMemoryMarketRegistry, MarketRegistry
from market_integrity.scheduler.runner import Scheduler
from market_integrity.scheduler.sink import DecisionSink, LoggingDecisionSink

__all__ = [
    "DecisionSink",
    "InMemoryMarketRegistry",
    "LoggingDecisionSink",
    "MarketRegistry",
    "RetryTracker",
    "Scheduler",
]
