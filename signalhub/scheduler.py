"""MarketScanScheduler — the fixed-cadence scan loop.

Every cycle walks the enabled strategy bindings whose accounts are
connected, pre-fetches candles for all of their symbols, and for each
binding takes the first qualifying signal: decision engine first, news
overlay as fallback.  That one signal is executed and/or published, then
the binding is done for the cycle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from signalhub.broker.base import ExecutionVenue, MarketDataProvider
from signalhub.config import Config
from signalhub.models.binding import StrategyBinding
from signalhub.news.overlay import NewsOverlay
from signalhub.repos.db import utc_iso
from signalhub.strategy.base import DecisionEngineProtocol
from signalhub.strategy.models import Candle, CandidateSignal
from signalhub.strategy.registry import get_strategy

logger = logging.getLogger("signalhub.scheduler")


@dataclass
class SchedulerState:
    """Mutable lifecycle state owned by one scheduler instance."""

    running: bool = False
    cycle_count: int = 0
    last_cycle_at: Optional[str] = None
    last_results: list[dict] = field(default_factory=list)


class MarketScanScheduler:
    """Drives scanning, execution and publication for all bindings.

    Args:
        config: Global ``Config``.
        market_data: Candle source.
        venue: Execution venue (account discovery, position counts, orders).
        bindings: Strategy bindings; disabled ones are ignored.
        publisher: Object with ``async publish(candidate, priority,
            binding_name, now)``; usually the ``BroadcastEngine``.
        news_overlay: Optional news signal source and guard.
        strategy_factory: Maps a binding's strategy key to a decision
            engine (defaults to the strategy registry).
    """

    def __init__(
        self,
        config: Config,
        market_data: MarketDataProvider,
        venue: ExecutionVenue,
        bindings: Sequence[StrategyBinding],
        publisher=None,
        news_overlay: Optional[NewsOverlay] = None,
        strategy_factory: Callable[[str], DecisionEngineProtocol] = get_strategy,
    ) -> None:
        self._config = config
        self._market_data = market_data
        self._venue = venue
        self._bindings = list(bindings)
        self._publisher = publisher
        self._news = news_overlay
        self._strategy_factory = strategy_factory
        self._strategies: dict[str, DecisionEngineProtocol] = {}

        self.state = SchedulerState()
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start the loop; a second call while running only logs a warning."""
        if self.state.running:
            logger.warning("Scheduler already running; start ignored")
            return False
        self.state.running = True
        self._wake.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Scheduler started: %d binding(s), every %ds",
            len(self._bindings), self._config.scan_interval_seconds,
        )
        return True

    async def stop(self) -> bool:
        """Stop after the current cycle finishes.  Scheduled deliveries are untouched."""
        if not self.state.running:
            return False
        self.state.running = False
        self._wake.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Scheduler stopped after %d cycle(s)", self.state.cycle_count)
        return True

    def status(self) -> dict:
        return {
            "running": self.state.running,
            "cycle_count": self.state.cycle_count,
            "last_cycle_at": self.state.last_cycle_at,
            "bindings": [b.name for b in self._bindings if b.enabled],
        }

    async def _loop(self) -> None:
        while self.state.running:
            try:
                await self.run_cycle()
            except Exception as exc:
                logger.error("Scan cycle failed: %s", exc)
            if not self.state.running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), self._config.scan_interval_seconds)
            except asyncio.TimeoutError:
                pass

    # ── Cycle ────────────────────────────────────────────────────────────

    async def run_cycle(self, now: Optional[datetime] = None) -> list[dict]:
        """Run one scan over all bindings and return one result per binding."""
        async with self._cycle_lock:
            now = now or datetime.now(timezone.utc)
            results = await self._scan(now)
            self.state.cycle_count += 1
            self.state.last_cycle_at = utc_iso(now)
            self.state.last_results = results
            return results

    async def _scan(self, now: datetime) -> list[dict]:
        enabled = [b for b in self._bindings if b.enabled]
        if not enabled:
            return []

        try:
            connected = await self._venue.connected_accounts()
        except Exception as exc:
            logger.error("Could not list connected accounts: %s", exc)
            return [{"binding": b.name, "action": "error", "reason": str(exc)} for b in enabled]

        results: list[dict] = []
        ready: list[StrategyBinding] = []
        for binding in enabled:
            if binding.account_id not in connected:
                results.append(_skipped(binding, "account not connected"))
                continue
            if binding.execute_trades:
                try:
                    open_count = await self._venue.count_open_positions(binding.account_id)
                except Exception as exc:
                    logger.error("Binding '%s': position count failed: %s", binding.name, exc)
                    results.append({"binding": binding.name, "action": "error", "reason": str(exc)})
                    continue
                if open_count >= binding.max_open_positions:
                    results.append(_skipped(binding, f"position ceiling reached ({open_count})"))
                    continue
            ready.append(binding)

        candles = await self._prefetch(ready)

        for binding in ready:
            try:
                results.append(await self._process_binding(binding, candles, now))
            except Exception as exc:
                logger.error("Binding '%s' failed: %s", binding.name, exc)
                results.append({"binding": binding.name, "action": "error", "reason": str(exc)})
        return results

    async def _prefetch(self, bindings: Sequence[StrategyBinding]) -> dict[tuple[str, str], list[Candle]]:
        """Fetch every (symbol, timeframe) once, concurrently but bounded."""
        keys = sorted({(s, b.timeframe) for b in bindings for s in b.symbols})
        semaphore = asyncio.Semaphore(max(1, self._config.candle_fetch_concurrency))

        async def _fetch(symbol: str, timeframe: str) -> list[Candle]:
            async with semaphore:
                return await self._market_data.fetch_candles(
                    symbol, timeframe, count=self._config.candle_count,
                )

        fetched = await asyncio.gather(*(_fetch(s, tf) for s, tf in keys), return_exceptions=True)
        candles: dict[tuple[str, str], list[Candle]] = {}
        for key, result in zip(keys, fetched):
            if isinstance(result, Exception):
                logger.warning("Candle fetch failed for %s %s: %s", key[0], key[1], result)
                continue
            candles[key] = result
        return candles

    def _strategy_for(self, binding: StrategyBinding) -> DecisionEngineProtocol:
        if binding.strategy not in self._strategies:
            self._strategies[binding.strategy] = self._strategy_factory(binding.strategy)
        return self._strategies[binding.strategy]

    async def _process_binding(
        self,
        binding: StrategyBinding,
        candles: dict[tuple[str, str], list[Candle]],
        now: datetime,
    ) -> dict:
        engine = self._strategy_for(binding)
        for symbol in binding.symbols:
            series = candles.get((symbol, binding.timeframe))
            if not series:
                continue
            try:
                candidate = self._evaluate(binding, engine, symbol, series, now)
            except Exception as exc:
                logger.error("Binding '%s' %s: evaluation failed: %s", binding.name, symbol, exc)
                continue
            if candidate is None:
                continue
            # One signal per binding per cycle
            return await self._act(binding, candidate, now)
        return {"binding": binding.name, "action": "no_signal"}

    def _evaluate(
        self,
        binding: StrategyBinding,
        engine: DecisionEngineProtocol,
        symbol: str,
        series: list[Candle],
        now: datetime,
    ) -> Optional[CandidateSignal]:
        min_conf = self._config.min_confidence
        blocked = False
        if self._news is not None:
            guard = self._news.should_avoid_trading(
                symbol, now, minutes_before=self._config.news_guard_minutes,
            )
            if guard.avoid:
                blocked = True
                logger.info("Binding '%s' %s: news guard (%s)", binding.name, symbol, guard.reason)

        if not blocked:
            candidate = engine.analyze(series, symbol, binding.risk_level, binding.timeframe)
            if candidate is not None and candidate.confidence >= min_conf:
                return candidate

        if self._news is not None:
            candidate = self._news.generate_news_signal(symbol, series, now)
            if candidate is not None and candidate.confidence >= min_conf:
                return candidate
        return None

    async def _act(self, binding: StrategyBinding, candidate: CandidateSignal, now: datetime) -> dict:
        result = {
            "binding": binding.name,
            "action": "signal",
            "symbol": candidate.symbol,
            "direction": candidate.direction.value,
            "confidence": candidate.confidence,
            "source": candidate.source,
            "order_placed": False,
            "signal_published": False,
        }

        if binding.execute_trades:
            try:
                # Re-read right before execution; positions may have opened since the pre-check
                open_count = await self._venue.count_open_positions(binding.account_id)
                if open_count >= binding.max_open_positions:
                    result["order_skipped"] = f"position ceiling reached ({open_count})"
                else:
                    receipt = await self._venue.open_position(
                        binding.account_id,
                        candidate.symbol,
                        candidate.direction,
                        candidate.size,
                        candidate.stop_loss,
                        candidate.take_profit,
                        tag=binding.name,
                    )
                    result["order_placed"] = True
                    result["order_id"] = receipt.order_id
            except Exception as exc:
                logger.error("Binding '%s': order failed: %s", binding.name, exc)
                result["order_error"] = str(exc)

        if binding.publish_signals and self._publisher is not None:
            try:
                signal = await self._publisher.publish(
                    candidate, binding.priority, binding_name=binding.name, now=now,
                )
                result["signal_published"] = True
                result["signal_id"] = signal.id
            except Exception as exc:
                logger.error("Binding '%s': publish failed: %s", binding.name, exc)
                result["publish_error"] = str(exc)

        logger.info(
            "Binding '%s': %s %s @ %.5f conf %.0f (order=%s, published=%s)",
            binding.name, candidate.direction.value.upper(), candidate.symbol,
            candidate.entry_price, candidate.confidence,
            result["order_placed"], result["signal_published"],
        )
        return result


def _skipped(binding: StrategyBinding, reason: str) -> dict:
    return {"binding": binding.name, "action": "skipped", "reason": reason}
