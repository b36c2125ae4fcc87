"""FraudDetector — sliding-window manipulation checks over trade streams.

Every recorded trade is appended to its market's history, folded into the
trader's running pattern, and then scored by four independent checks:

    wash trading         same user, trailing 5 min, buys and sells cancel out
    pump & dump          price jump and volume surge across window buckets
    coordinated trading  many users piling onto one side within 2 min
    suspicious timing    reserved; never fires

The overall risk is the mean score of the checks that fired.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from market_integrity.config.schema import FraudConfig
from market_integrity.models.fraud import (
    FraudDetectionResult,
    FraudIndicator,
    IndicatorKind,
    Recommendation,
    TradeEvent,
    TradeSide,
    UserTradePattern,
)

log = structlog.get_logger("fraud_detector")

WASH_MIN_TRADES = 3
WASH_MAX_RATIO = 0.2
PUMP_MIN_TRADES = 5
PUMP_BUCKETS = 5
PUMP_PRICE_MOVE_PCT = 10.0
PUMP_VOLUME_FACTOR = 3.0
COORD_MIN_TRADES = 5
COORD_MIN_USERS = 3
COORD_MIN_TRADES_PER_USER = 1.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def recommendation_for(risk_score: float) -> Recommendation:
    """BLOCK above 0.8, FLAG above 0.6, otherwise ALLOW (strict on both edges)."""
    if risk_score > 0.8:
        return "BLOCK"
    if risk_score > 0.6:
        return "FLAG"
    return "ALLOW"


def aggregate(indicators: list[FraudIndicator]) -> FraudDetectionResult:
    """Fold triggered indicators into one result."""
    risk = sum(i.score for i in indicators) / len(indicators) if indicators else 0.0
    return FraudDetectionResult(
        is_suspicious=risk > 0.6,
        indicators=indicators,
        overall_risk_score=risk,
        recommendation=recommendation_for(risk),
    )


class FraudDetector:
    """Per-market trade history plus per-user aggregate statistics.

    One lock guards all state; the purge of expired trades runs inside the
    same critical section as the append. Per-user patterns are bounded by
    *max_tracked_users*, evicting whoever traded least recently.
    """

    def __init__(
        self,
        time_window_s: float = 60 * 60,
        wash_window_s: float = 5 * 60,
        coordination_window_s: float = 2 * 60,
        max_tracked_users: int = 100_000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.time_window = timedelta(seconds=time_window_s)
        self.wash_window = timedelta(seconds=wash_window_s)
        self.coordination_window = timedelta(seconds=coordination_window_s)
        self.max_tracked_users = max_tracked_users
        self._clock = clock
        self._trades: dict[str, list[TradeEvent]] = {}
        self._patterns: OrderedDict[str, UserTradePattern] = OrderedDict()
        self._user_risk: dict[str, float] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: FraudConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> FraudDetector:
        return cls(
            time_window_s=config.time_window_s,
            wash_window_s=config.wash_window_s,
            coordination_window_s=config.coordination_window_s,
            max_tracked_users=config.max_tracked_users,
            clock=clock,
        )

    # ── Public API ────────────────────────────────────────────

    def record_trade(self, trade: TradeEvent) -> FraudDetectionResult:
        """Record a trade and score it against the market's recent history."""
        with self._lock:
            self._trades.setdefault(trade.market_id, []).append(trade)
            self._update_pattern(trade)
            now = self._clock()
            self._purge(now)
            result = self._detect(trade, now)
            self._track_risk(trade, result)

        if result.indicators:
            log.info(
                "fraud_indicators",
                user_id=trade.user_id,
                market_id=trade.market_id,
                indicators=[i.kind.value for i in result.indicators],
                risk_score=round(result.overall_risk_score, 3),
                recommendation=result.recommendation,
            )
        return result

    def get_user_stats(self, user_id: str) -> UserTradePattern | None:
        """Return a snapshot of the user's pattern, or None if never seen."""
        with self._lock:
            pattern = self._patterns.get(user_id)
            return pattern.model_copy() if pattern is not None else None

    def get_flagged_users(self, threshold: float = 0.6) -> dict[str, UserTradePattern]:
        """Users whose highest observed risk, as trader or implicated party, is >= threshold."""
        with self._lock:
            return {
                user_id: self._patterns[user_id].model_copy()
                for user_id, risk in self._user_risk.items()
                if risk >= threshold and user_id in self._patterns
            }

    def recent_trades(self, market_id: str) -> list[TradeEvent]:
        """Trades for a market still inside the detection window."""
        with self._lock:
            return self._recent(market_id, self.time_window, self._clock())

    # ── Checks ────────────────────────────────────────────────

    def _detect(self, trade: TradeEvent, now: datetime) -> FraudDetectionResult:
        checks = (
            self._detect_wash_trading,
            self._detect_pump_dump,
            self._detect_coordinated_trades,
            self._detect_suspicious_timing,
        )
        indicators = [ind for check in checks if (ind := check(trade, now)) is not None]
        return aggregate(indicators)

    def _detect_wash_trading(self, trade: TradeEvent, now: datetime) -> FraudIndicator | None:
        """A user whose buys and sells nearly cancel out within a few minutes."""
        user_trades = [
            t for t in self._recent(trade.market_id, self.wash_window, now)
            if t.user_id == trade.user_id
        ]
        if len(user_trades) < WASH_MIN_TRADES:
            return None

        buy_volume = sum(t.amount for t in user_trades if t.side == TradeSide.BUY)
        sell_volume = sum(t.amount for t in user_trades if t.side == TradeSide.SELL)
        total = buy_volume + sell_volume
        if total == 0:
            return None

        net = buy_volume - sell_volume
        wash_ratio = abs(net) / total
        if wash_ratio > WASH_MAX_RATIO:
            return None

        score = 1 - wash_ratio
        minutes = self.wash_window.total_seconds() / 60
        return FraudIndicator(
            kind=IndicatorKind.WASH_TRADING,
            severity="critical" if score > 0.8 else "high",
            score=score,
            evidence=[
                f"User made {len(user_trades)} trades in {minutes:g} min",
                f"Buy volume: {buy_volume:.2f}, Sell volume: {sell_volume:.2f}",
                f"Net position: {net:.2f} ({wash_ratio * 100:.1f}% of total)",
            ],
            suspicious_users=[trade.user_id],
            affected_markets=[trade.market_id],
        )

    def _detect_pump_dump(self, trade: TradeEvent, now: datetime) -> FraudIndicator | None:
        """Price jumps between buckets of the window, accompanied by a volume surge."""
        recent = self._recent(trade.market_id, self.time_window, now)
        if len(recent) < PUMP_MIN_TRADES:
            return None

        bucket_s = self.time_window.total_seconds() / PUMP_BUCKETS
        start = min(t.observed_at for t in recent)
        buckets: list[list[TradeEvent]] = [[] for _ in range(PUMP_BUCKETS)]
        for t in recent:
            index = int((t.observed_at - start).total_seconds() // bucket_s)
            if 0 <= index < PUMP_BUCKETS:
                buckets[index].append(t)

        # Price moves compare consecutive non-empty buckets
        prices = [sum(t.price for t in b) / len(b) for b in buckets if b]
        price_spikes = 0
        for prev, cur in zip(prices, prices[1:]):
            if prev != 0 and abs((cur - prev) / prev) * 100 > PUMP_PRICE_MOVE_PCT:
                price_spikes += 1

        volumes = [sum(t.amount for t in b) for b in buckets]
        volume_spikes = sum(
            1 for prev, cur in zip(volumes, volumes[1:])
            if cur > prev * PUMP_VOLUME_FACTOR
        )

        if price_spikes == 0 or volume_spikes == 0:
            return None

        score = min((price_spikes + volume_spikes) / 4, 1.0)
        return FraudIndicator(
            kind=IndicatorKind.PUMP_DUMP,
            severity="high" if score > 0.7 else "medium",
            score=score,
            evidence=[
                f"Price spikes detected: {price_spikes}",
                f"Volume spikes detected: {volume_spikes}",
                f"Market showed {score * 100:.0f}% pump-dump characteristics",
            ],
            affected_markets=[trade.market_id],
        )

    def _detect_coordinated_trades(self, trade: TradeEvent, now: datetime) -> FraudIndicator | None:
        """Several users repeatedly trading the same direction in a short window."""
        recent = self._recent(trade.market_id, self.coordination_window, now)
        if len(recent) < COORD_MIN_TRADES:
            return None

        buys = [t for t in recent if t.side == TradeSide.BUY]
        sells = [t for t in recent if t.side == TradeSide.SELL]
        side, same_side = (TradeSide.BUY, buys) if len(buys) > len(sells) else (TradeSide.SELL, sells)

        users = list(dict.fromkeys(t.user_id for t in same_side))
        if len(users) < COORD_MIN_USERS:
            return None
        per_user = len(same_side) / len(users)
        if per_user < COORD_MIN_TRADES_PER_USER:
            return None

        score = min(per_user / 5, 1.0)
        minutes = self.coordination_window.total_seconds() / 60
        return FraudIndicator(
            kind=IndicatorKind.COORDINATED_TRADES,
            severity="high" if score > 0.7 else "medium",
            score=score,
            evidence=[
                f"{len(users)} users made {len(same_side)} {side.value} trades in {minutes:g} min",
                f"{per_user:.2f} trades per user (suspicious if >{COORD_MIN_TRADES_PER_USER})",
            ],
            suspicious_users=users,
            affected_markets=[trade.market_id],
        )

    def _detect_suspicious_timing(self, trade: TradeEvent, now: datetime) -> FraudIndicator | None:
        """Reserved for trades placed right before market close or resolution.

        Never fires: the detector has no view of market schedules.
        """
        # TODO: flag trades inside a configurable window before close/resolution
        # once the market registry exposes end and resolution times.
        return None

    # ── Internals ─────────────────────────────────────────────

    def _recent(self, market_id: str, window: timedelta, now: datetime) -> list[TradeEvent]:
        cutoff = now - window
        return [t for t in self._trades.get(market_id, ()) if t.observed_at > cutoff]

    def _update_pattern(self, trade: TradeEvent) -> None:
        pattern = self._patterns.get(trade.user_id)
        if pattern is None:
            pattern = UserTradePattern(user_id=trade.user_id)
            self._patterns[trade.user_id] = pattern

        prior = pattern.total_trades
        if prior > 0 and pattern.last_trade_time is not None:
            gap = max((trade.observed_at - pattern.last_trade_time).total_seconds(), 0.0)
            pattern.avg_time_between_trades = (
                pattern.avg_time_between_trades * (prior - 1) + gap
            ) / prior

        pattern.total_trades = prior + 1
        if trade.side == TradeSide.BUY:
            pattern.buy_volume += trade.amount
        else:
            pattern.sell_volume += trade.amount
        pattern.net_position = pattern.buy_volume - pattern.sell_volume
        pattern.avg_trade_size = (pattern.avg_trade_size * prior + trade.amount) / pattern.total_trades
        pattern.last_trade_time = trade.observed_at

        self._patterns.move_to_end(trade.user_id)
        while len(self._patterns) > self.max_tracked_users:
            evicted, _ = self._patterns.popitem(last=False)
            self._user_risk.pop(evicted, None)
            log.debug("user_pattern_evicted", user_id=evicted)

    def _purge(self, now: datetime) -> None:
        """Drop trades older than twice the window, and markets left empty."""
        cutoff = now - self.time_window * 2
        for market_id in list(self._trades):
            kept = [t for t in self._trades[market_id] if t.observed_at > cutoff]
            if kept:
                self._trades[market_id] = kept
            else:
                del self._trades[market_id]

    def _track_risk(self, trade: TradeEvent, result: FraudDetectionResult) -> None:
        if result.overall_risk_score <= 0:
            return
        implicated = {trade.user_id}
        for indicator in result.indicators:
            implicated.update(indicator.suspicious_users)
        for user_id in implicated:
            if user_id not in self._patterns:
                continue
            self._user_risk[user_id] = max(self._user_risk.get(user_id, 0.0), result.overall_risk_score)
