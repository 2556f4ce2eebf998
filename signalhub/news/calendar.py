"""Economic calendar — impact tables and recurrence-generated events.

Events are generated deterministically from calendar heuristics
("first Friday of the month", "every Thursday", ...) rather than pulled
from an external feed.  Release times are defined in US Eastern time and
converted to UTC.  Generation is cached per day, so the events for a given
date never change once produced.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from signalhub.strategy.models import split_symbol

logger = logging.getLogger("signalhub.news")

EASTERN = ZoneInfo("America/New_York")


@dataclass(frozen=True)
class ImpactProfile:
    """Severity classification of an event with its typical pip move."""

    impact: str  # "HIGH", "MEDIUM" or "LOW"
    avg_pips: float
    volatility_multiplier: float

    @property
    def expected_pips(self) -> float:
        return self.avg_pips * self.volatility_multiplier


# Keyword → (average pip move, volatility multiplier), checked HIGH → LOW
HIGH_IMPACT_EVENTS: dict[str, tuple[float, float]] = {
    "Non-Farm Payrolls": (80, 2.5),
    "NFP": (80, 2.5),
    "FOMC": (60, 2.0),
    "Fed Interest Rate": (60, 2.0),
    "Interest Rate Decision": (50, 1.8),
    "CPI": (45, 1.7),
    "Consumer Price Index": (45, 1.7),
    "GDP": (40, 1.6),
    "Gross Domestic Product": (40, 1.6),
    "ECB": (55, 1.9),
    "BOE": (50, 1.8),
    "BOJ": (45, 1.7),
    "RBA": (40, 1.5),
    "Employment Change": (35, 1.5),
    "Unemployment Rate": (30, 1.4),
    "Retail Sales": (30, 1.4),
    "PMI": (25, 1.3),
    "Trade Balance": (20, 1.2),
}

MEDIUM_IMPACT_EVENTS: dict[str, tuple[float, float]] = {
    "PPI": (20, 1.2),
    "Producer Price Index": (20, 1.2),
    "Industrial Production": (18, 1.15),
    "Building Permits": (15, 1.1),
    "Housing Starts": (15, 1.1),
    "Consumer Confidence": (18, 1.15),
    "Durable Goods": (20, 1.2),
    "Factory Orders": (15, 1.1),
    "ISM": (22, 1.2),
    "Manufacturing PMI": (20, 1.15),
    "Services PMI": (18, 1.1),
    "Core Retail Sales": (25, 1.3),
    "Existing Home Sales": (12, 1.05),
    "New Home Sales": (12, 1.05),
    "ADP Employment": (25, 1.3),
    "Initial Jobless Claims": (15, 1.1),
    "ZEW Economic Sentiment": (20, 1.2),
}

LOW_IMPACT_EVENTS: dict[str, tuple[float, float]] = {
    "Wholesale Inventories": (8, 1.0),
    "Business Inventories": (8, 1.0),
    "Consumer Credit": (10, 1.0),
    "Treasury Budget": (5, 1.0),
    "Leading Indicators": (10, 1.0),
    "Current Account": (12, 1.05),
    "Import Prices": (8, 1.0),
    "Export Prices": (8, 1.0),
    "Richmond Fed": (10, 1.0),
    "Chicago Fed": (8, 1.0),
    "Flash PMI": (15, 1.1),
}

IMPACT_TABLE: dict[str, dict[str, tuple[float, float]]] = {
    "HIGH": HIGH_IMPACT_EVENTS,
    "MEDIUM": MEDIUM_IMPACT_EVENTS,
    "LOW": LOW_IMPACT_EVENTS,
}

DEFAULT_IMPACT = ImpactProfile("LOW", 10, 1.0)

# Instruments moved by each currency's news
CURRENCY_PAIRS: dict[str, list[str]] = {
    "USD": ["EUR_USD", "GBP_USD", "USD_JPY", "USD_CHF", "USD_CAD", "AUD_USD", "NZD_USD", "XAU_USD"],
    "EUR": ["EUR_USD", "EUR_JPY", "EUR_GBP", "EUR_CAD", "EUR_AUD"],
    "GBP": ["GBP_USD", "GBP_JPY", "EUR_GBP", "GBP_CAD", "GBP_AUD"],
    "JPY": ["USD_JPY", "EUR_JPY", "GBP_JPY", "AUD_JPY", "CAD_JPY"],
    "AUD": ["AUD_USD", "AUD_JPY", "AUD_CAD", "AUD_NZD", "EUR_AUD"],
    "CAD": ["USD_CAD", "CAD_JPY", "EUR_CAD", "GBP_CAD", "AUD_CAD"],
    "NZD": ["NZD_USD", "AUD_NZD", "NZD_JPY", "EUR_NZD"],
    "CHF": ["USD_CHF", "EUR_CHF", "GBP_CHF", "CHF_JPY"],
    "XAU": ["XAU_USD"],
}


def classify_impact(event_name: str) -> ImpactProfile:
    """Classify *event_name* by case-insensitive keyword match.

    The HIGH table is searched first, then MEDIUM, then LOW; the first
    keyword contained in the name wins.  Unknown events are LOW impact.
    """
    name = event_name.lower()
    for impact, table in IMPACT_TABLE.items():
        for keyword, (avg_pips, multiplier) in table.items():
            if keyword.lower() in name:
                return ImpactProfile(impact, avg_pips, multiplier)
    return DEFAULT_IMPACT


@dataclass(frozen=True)
class EconomicEvent:
    """A scheduled macro-economic release."""

    time: datetime  # timezone-aware, UTC
    currency: str
    event: str
    impact: str
    avg_pips: float
    volatility_multiplier: float

    @property
    def expected_pips(self) -> float:
        return self.avg_pips * self.volatility_multiplier

    def affects(self, symbol: str) -> bool:
        """Return True when this event's currency is one of *symbol*'s currencies."""
        base, quote = split_symbol(symbol)
        if self.currency in (base, quote):
            return True
        return symbol in CURRENCY_PAIRS.get(self.currency, [])

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "currency": self.currency,
            "event": self.event,
            "impact": self.impact,
            "expected_pips": round(self.expected_pips, 1),
        }


# ── Recurrence heuristics ────────────────────────────────────────────────


@dataclass(frozen=True)
class _Recurrence:
    currency: str
    event: str
    hour: int
    minute: int
    rule: Callable[[date], bool]


def _weekday(d: date) -> int:
    return d.weekday()  # Monday=0 … Sunday=6


_MON, _TUE, _WED, _THU, _FRI = 0, 1, 2, 3, 4

_RECURRENCES: tuple[_Recurrence, ...] = (
    # US
    _Recurrence("USD", "Non-Farm Payrolls", 8, 30,
                lambda d: _weekday(d) == _FRI and d.day <= 7),
    _Recurrence("USD", "Unemployment Rate", 8, 30,
                lambda d: _weekday(d) == _FRI and d.day <= 7),
    _Recurrence("USD", "CPI m/m", 8, 30,
                lambda d: 10 <= d.day <= 15 and _TUE <= _weekday(d) <= _THU),
    _Recurrence("USD", "Retail Sales m/m", 8, 30,
                lambda d: 14 <= d.day <= 17 and _TUE <= _weekday(d) <= _THU),
    _Recurrence("USD", "Initial Jobless Claims", 8, 30,
                lambda d: _weekday(d) == _THU),
    _Recurrence("USD", "ISM Manufacturing PMI", 10, 0,
                lambda d: d.day == 1 or (d.day <= 3 and _weekday(d) == _MON)),
    _Recurrence("USD", "ISM Services PMI", 10, 0,
                lambda d: d.day == 3 or (d.day <= 5 and _weekday(d) == _WED)),
    # Eurozone
    _Recurrence("EUR", "German ZEW Economic Sentiment", 5, 0,
                lambda d: _weekday(d) == _TUE and 8 <= d.day <= 20),
    _Recurrence("EUR", "ECB Interest Rate Decision", 8, 15,
                lambda d: _weekday(d) == _THU and 4 <= d.day <= 14),
    # UK
    _Recurrence("GBP", "BOE Interest Rate Decision", 7, 0,
                lambda d: _weekday(d) == _THU and d.day <= 14),
    _Recurrence("GBP", "GDP m/m", 2, 0,
                lambda d: 10 <= d.day <= 15 and _TUE <= _weekday(d) <= _THU),
    # Australia
    _Recurrence("AUD", "RBA Interest Rate Decision", 0, 30,
                lambda d: _weekday(d) == _TUE and d.day <= 7),
    _Recurrence("AUD", "Employment Change", 19, 30,
                lambda d: _weekday(d) == _THU and 12 <= d.day <= 20),
    # Canada
    _Recurrence("CAD", "BOC Interest Rate Decision", 10, 0,
                lambda d: _weekday(d) == _WED and d.day <= 12),
    _Recurrence("CAD", "Employment Change", 8, 30,
                lambda d: _weekday(d) == _FRI and d.day <= 7),
    # Japan
    _Recurrence("JPY", "BOJ Interest Rate Decision", 23, 0,
                lambda d: _weekday(d) == _FRI and 15 <= d.day <= 25),
    _Recurrence("JPY", "GDP q/q", 19, 50,
                lambda d: 12 <= d.day <= 18 and _MON <= _weekday(d) <= _WED),
)


@lru_cache(maxsize=64)
def events_on(day: date) -> tuple[EconomicEvent, ...]:
    """Generate the scheduled events for one US-Eastern calendar *day*.

    Weekends produce no events.  Results are cached, so repeated calls for
    the same day return the identical tuple.
    """
    if _weekday(day) >= 5:
        return ()

    events: list[EconomicEvent] = []
    for rec in _RECURRENCES:
        if not rec.rule(day):
            continue
        profile = classify_impact(rec.event)
        local = datetime.combine(day, time(rec.hour, rec.minute), tzinfo=EASTERN)
        events.append(
            EconomicEvent(
                time=local.astimezone(timezone.utc),
                currency=rec.currency,
                event=rec.event,
                impact=profile.impact,
                avg_pips=profile.avg_pips,
                volatility_multiplier=profile.volatility_multiplier,
            )
        )
    return tuple(deduplicate(events))


def deduplicate(events: Iterable[EconomicEvent]) -> list[EconomicEvent]:
    """Drop repeats of the same (currency, event, time)."""
    seen: set[tuple[str, str, datetime]] = set()
    unique: list[EconomicEvent] = []
    for ev in events:
        key = (ev.currency, ev.event, ev.time)
        if key in seen:
            continue
        seen.add(key)
        unique.append(ev)
    return unique


def generate_scheduled_events(start: date, days: int = 7) -> list[EconomicEvent]:
    """Return events for *days* consecutive days from *start*, time-ordered."""
    events: list[EconomicEvent] = []
    for offset in range(days):
        events.extend(events_on(start + timedelta(days=offset)))
    return sorted(deduplicate(events), key=lambda ev: ev.time)


class ScheduledCalendar:
    """Calendar provider backed by the recurrence heuristics.

    Any object with an ``events_between(start, end)`` method can stand in
    for it (an external feed adapter, or a fixed list in tests).
    """

    def __init__(self, extra_events: Optional[Iterable[EconomicEvent]] = None) -> None:
        self._extra = list(extra_events or [])

    def events_between(self, start: datetime, end: datetime) -> list[EconomicEvent]:
        """All events with ``start <= time <= end`` (both timezone-aware)."""
        first_day = start.astimezone(EASTERN).date()
        last_day = end.astimezone(EASTERN).date()
        span = (last_day - first_day).days + 1
        candidates = generate_scheduled_events(first_day, days=max(span, 1)) + self._extra
        return sorted(
            (ev for ev in deduplicate(candidates) if start <= ev.time <= end),
            key=lambda ev: ev.time,
        )


class StaticCalendar:
    """Calendar provider over a fixed list of events."""

    def __init__(self, events: Iterable[EconomicEvent]) -> None:
        self._events = sorted(events, key=lambda ev: ev.time)

    def events_between(self, start: datetime, end: datetime) -> list[EconomicEvent]:
        return [ev for ev in self._events if start <= ev.time <= end]


def make_event(
    when: datetime,
    currency: str,
    name: str,
    impact: Optional[str] = None,
) -> EconomicEvent:
    """Build an event, classifying its impact by keyword when not given."""
    profile = classify_impact(name)
    if impact is not None:
        profile = ImpactProfile(impact, profile.avg_pips, profile.volatility_multiplier)
    return EconomicEvent(
        time=when.astimezone(timezone.utc),
        currency=currency,
        event=name,
        impact=profile.impact,
        avg_pips=profile.avg_pips,
        volatility_multiplier=profile.volatility_multiplier,
    )
