"""News overlay — trades and guards around scheduled economic events.

Two signal modes:
    - Post-news: a HIGH/MEDIUM event released in the last few minutes;
      direction follows the momentum of the reaction candles.
    - Pre-news: a HIGH event 5–15 minutes away; only above a stricter
      confidence floor, with a tighter stop and a smaller size.

Plus a guard that tells callers to stay out of an instrument while a
HIGH-impact event on one of its currencies is imminent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Sequence

from signalhub.news.calendar import EconomicEvent, ScheduledCalendar
from signalhub.risk.sl_tp import calculate_news_levels
from signalhub.strategy.models import Candle, CandidateSignal, Direction

logger = logging.getLogger("signalhub.news")

IMPACT_CONFIDENCE_BONUS: dict[str, tuple[float, float]] = {
    # impact → (bonus, cap)
    "HIGH": (15.0, 95.0),
    "MEDIUM": (5.0, 85.0),
}
MIN_ACTIONABLE_CONFIDENCE = 55.0
POST_NEWS_SIZE = 0.02
PRE_NEWS_SIZE = 0.01
PRE_NEWS_SL_TIGHTENING = 0.75


class CalendarProvider(Protocol):
    def events_between(self, start: datetime, end: datetime) -> list[EconomicEvent]:
        ...


@dataclass(frozen=True)
class NewsAnalysis:
    """Direction and confidence derived for one event on one instrument."""

    direction: Direction
    confidence: float
    reason: str
    event: EconomicEvent


@dataclass(frozen=True)
class AvoidanceDecision:
    """Result of the news guard."""

    avoid: bool
    reason: str = ""
    event: Optional[EconomicEvent] = None
    minutes_until: Optional[float] = None


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class NewsOverlay:
    """Economic-calendar signal source and avoidance guard.

    Args:
        calendar: Provider of ``EconomicEvent`` objects.  Defaults to the
            recurrence-based ``ScheduledCalendar``.
        post_window_minutes: How far back an event still counts as "just
            released" (default 15).
        pre_window_minutes: ``(min, max)`` minutes before a HIGH event in
            which pre-positioning is allowed (default 5–15).
        pre_news_min_confidence: Confidence floor for pre-news signals.
        post_news_min_confidence: Confidence floor for post-news signals.
    """

    def __init__(
        self,
        calendar: Optional[CalendarProvider] = None,
        post_window_minutes: int = 15,
        pre_window_minutes: tuple[int, int] = (5, 15),
        pre_news_min_confidence: float = 70.0,
        post_news_min_confidence: float = 60.0,
    ) -> None:
        self._calendar = calendar or ScheduledCalendar()
        self._post_window = post_window_minutes
        self._pre_window = pre_window_minutes
        self._pre_min_conf = pre_news_min_confidence
        self._post_min_conf = post_news_min_confidence

    # ── Calendar queries ─────────────────────────────────────────────────

    def upcoming_events(self, now: Optional[datetime] = None, minutes_ahead: int = 60) -> list[EconomicEvent]:
        """Events from *now* up to *minutes_ahead*, soonest first."""
        now = _utc(now)
        return self._calendar.events_between(now, now + timedelta(minutes=minutes_ahead))

    def recent_events(self, now: Optional[datetime] = None, minutes_ago: int = 30) -> list[EconomicEvent]:
        """Events released in the last *minutes_ago*, most recent first."""
        now = _utc(now)
        events = self._calendar.events_between(now - timedelta(minutes=minutes_ago), now)
        return sorted(events, key=lambda ev: ev.time, reverse=True)

    # ── Analysis ─────────────────────────────────────────────────────────

    def analyze_event_for_pair(
        self,
        event: EconomicEvent,
        symbol: str,
        candles: Sequence[Candle],
    ) -> Optional[NewsAnalysis]:
        """Derive a direction for *symbol* from the candles around *event*.

        Momentum strength = |close₅ − open₁| / (3 × average body) over the
        last five candles.  Strength above 0.5 gives up to 90 confidence,
        above 0.3 up to 70; the event's impact then adds its bonus.
        Returns ``None`` when the event does not touch the symbol's
        currencies or the result is not actionable.
        """
        if not event.affects(symbol):
            return None
        if len(candles) < 5:
            return None

        recent = candles[-5:]
        price_change = recent[-1].close - recent[0].open
        avg_body = sum(abs(c.close - c.open) for c in recent) / 5
        strength = abs(price_change) / (avg_body * 3) if avg_body > 0 else 0.0
        momentum = "bullish" if price_change > 0 else "bearish"

        direction: Optional[Direction] = None
        confidence = 50.0
        if strength > 0.5:
            direction = Direction.BUY if momentum == "bullish" else Direction.SELL
            confidence = min(90.0, 50.0 + strength * 40.0)
        elif strength > 0.3:
            direction = Direction.BUY if momentum == "bullish" else Direction.SELL
            confidence = min(70.0, 50.0 + strength * 30.0)

        bonus, cap = IMPACT_CONFIDENCE_BONUS.get(event.impact, (0.0, 100.0))
        confidence = min(cap, confidence + bonus)

        if direction is None or confidence < MIN_ACTIONABLE_CONFIDENCE:
            return None

        return NewsAnalysis(
            direction=direction,
            confidence=round(confidence, 1),
            reason=f"{event.event} ({event.currency}) - {momentum} momentum",
            event=event,
        )

    def _build_candidate(
        self,
        analysis: NewsAnalysis,
        symbol: str,
        entry: float,
        pre_news: bool,
        minutes_until: Optional[float] = None,
    ) -> CandidateSignal:
        event = analysis.event
        levels = calculate_news_levels(
            entry,
            analysis.direction,
            event.expected_pips,
            event.impact,
            symbol,
            sl_tightening=PRE_NEWS_SL_TIGHTENING if pre_news else 1.0,
        )
        mode = "PRE_NEWS" if pre_news else "POST_NEWS"
        reason = f"{mode}: {analysis.reason}"
        if minutes_until is not None:
            reason += f" ({round(minutes_until)} min to release)"
        return CandidateSignal(
            symbol=symbol,
            direction=analysis.direction,
            entry_price=entry,
            stop_loss=levels.sl,
            take_profits=levels.tps,
            confidence=analysis.confidence,
            size=PRE_NEWS_SIZE if pre_news else POST_NEWS_SIZE,
            timeframe="news",
            reason=reason,
            source="news_overlay",
            pre_news=pre_news,
            indicators={
                "event": event.event,
                "currency": event.currency,
                "impact": event.impact,
                "expected_pips": round(event.expected_pips, 1),
                "sl_pips": round(levels.sl_pips, 1),
                "tp_pips": round(levels.tp_pips, 1),
            },
        )

    def generate_news_signal(
        self,
        symbol: str,
        candles: Sequence[Candle],
        now: Optional[datetime] = None,
    ) -> Optional[CandidateSignal]:
        """Return a post-news or pre-news candidate for *symbol*, or ``None``.

        Post-news mode is checked first.  Errors are logged and treated as
        "no news signal".
        """
        now = _utc(now)
        if not candles:
            return None
        entry = candles[-1].close

        try:
            for event in self.recent_events(now, self._post_window):
                if event.impact not in ("HIGH", "MEDIUM"):
                    continue
                analysis = self.analyze_event_for_pair(event, symbol, candles)
                if analysis and analysis.confidence >= self._post_min_conf:
                    return self._build_candidate(analysis, symbol, entry, pre_news=False)

            low, high = self._pre_window
            for event in self.upcoming_events(now, high):
                if event.impact != "HIGH":
                    continue
                minutes_until = (event.time - now).total_seconds() / 60.0
                if not (low <= minutes_until <= high):
                    continue
                analysis = self.analyze_event_for_pair(event, symbol, candles)
                if analysis and analysis.confidence >= self._pre_min_conf:
                    return self._build_candidate(
                        analysis, symbol, entry, pre_news=True, minutes_until=minutes_until,
                    )
        except Exception as exc:
            logger.error("News signal error for %s: %s", symbol, exc)
        return None

    # ── Guard ────────────────────────────────────────────────────────────

    def should_avoid_trading(
        self,
        symbol: str,
        now: Optional[datetime] = None,
        minutes_before: int = 10,
    ) -> AvoidanceDecision:
        """Should new non-news positions on *symbol* be avoided right now?

        ``avoid`` is True when a HIGH-impact event affecting either of the
        symbol's currencies is due within *minutes_before*.
        """
        now = _utc(now)
        for event in self.upcoming_events(now, minutes_before):
            if event.impact != "HIGH" or not event.affects(symbol):
                continue
            minutes_until = (event.time - now).total_seconds() / 60.0
            return AvoidanceDecision(
                avoid=True,
                reason=f"{event.event} in {round(minutes_until)} minutes",
                event=event,
                minutes_until=minutes_until,
            )
        return AvoidanceDecision(avoid=False)
