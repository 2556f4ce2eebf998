"""Internal API routers — /scheduler, /signals, /tiers, /subscriptions, /calendar.

No business logic. Delegates to the scheduler, repos and broadcast engine
injected at startup.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from signalhub.models.signal import InvalidStatusTransition, SignalStatus
from signalhub.strategy.indicators import indicator_snapshot

logger = logging.getLogger("signalhub.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_scheduler = None         # MarketScanScheduler
_broadcast_engine = None  # BroadcastEngine
_signal_repo = None       # SignalRepo
_subscription_repo = None  # SubscriptionRepo
_delivery_repo = None     # DeliveryRepo
_market_data = None       # MarketDataProvider
_news_overlay = None      # NewsOverlay


def configure_routers(
    scheduler=None,
    broadcast_engine=None,
    signal_repo=None,
    subscription_repo=None,
    delivery_repo=None,
    market_data=None,
    news_overlay=None,
) -> None:
    """Inject dependencies from the application startup.

    Any argument may be a duck-typed stand-in in tests.
    """
    global _scheduler, _broadcast_engine, _signal_repo  # noqa: PLW0603
    global _subscription_repo, _delivery_repo, _market_data, _news_overlay  # noqa: PLW0603
    _scheduler = scheduler
    _broadcast_engine = broadcast_engine
    _signal_repo = signal_repo
    _subscription_repo = subscription_repo
    _delivery_repo = delivery_repo
    _market_data = market_data
    _news_overlay = news_overlay


def _signal_to_dict(signal) -> dict:
    return {
        "id": signal.id,
        "symbol": signal.symbol,
        "direction": signal.direction,
        "entry_price": signal.entry_price,
        "stop_loss": signal.stop_loss,
        "take_profits": list(signal.take_profits),
        "confidence": signal.confidence,
        "timeframe": signal.timeframe,
        "priority": signal.priority.value,
        "min_tier": signal.min_tier,
        "source": signal.source,
        "status": signal.status.value,
        "result_pips": signal.result_pips,
        "risk_reward": signal.risk_reward,
        "analysis": signal.analysis,
        "binding": signal.binding_name,
        "created_at": signal.created_at,
        "closed_at": signal.closed_at,
    }


# ── Scheduler control ────────────────────────────────────────────────────


@router.post("/scheduler/start")
async def start_scheduler():
    """Start the scan loop (no-op if already running)."""
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not configured")
    started = _scheduler.start()
    return {"started": started, **_scheduler.status()}


@router.post("/scheduler/stop")
async def stop_scheduler():
    """Stop the scan loop after the current cycle."""
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not configured")
    stopped = await _scheduler.stop()
    return {"stopped": stopped, **_scheduler.status()}


@router.get("/scheduler/status")
async def scheduler_status():
    if _scheduler is None:
        return {"running": False, "cycle_count": 0, "last_cycle_at": None, "bindings": []}
    status = _scheduler.status()
    if _delivery_repo is not None:
        status["deliveries"] = _delivery_repo.count_by_status()
    return status


# ── Signals ──────────────────────────────────────────────────────────────


@router.get("/signals")
async def list_signals(
    limit: int = Query(default=50, ge=1, le=200),
    status: Optional[str] = Query(default=None),
    symbol: Optional[str] = Query(default=None),
):
    """Return signal history, newest first."""
    if _signal_repo is None:
        return {"signals": []}
    signals = _signal_repo.list_signals(limit=limit, status=status, symbol=symbol)
    return {"signals": [_signal_to_dict(s) for s in signals]}


@router.get("/signals/stats")
async def signal_stats(days: int = Query(default=30, ge=1, le=365)):
    """Win rate and pip totals over the last *days* days."""
    if _signal_repo is None:
        return {"stats": None}
    return {"stats": _signal_repo.get_stats(days=days)}


@router.post("/signals/{signal_id}/status")
async def update_signal_status(signal_id: int, body: dict):
    """Advance a signal's status and notify its recipients.

    Body: ``{"status": "tp1_hit", "result_pips": 25.0}``.
    """
    if _broadcast_engine is None:
        raise HTTPException(status_code=503, detail="Broadcast engine not configured")
    try:
        status = SignalStatus(body.get("status"))
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown status: {body.get('status')}")
    result_pips = body.get("result_pips")
    try:
        signal = await _broadcast_engine.update_status(
            signal_id, status, float(result_pips) if result_pips is not None else None,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Signal {signal_id} not found")
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"signal": _signal_to_dict(signal)}


@router.get("/signals/indicators/{symbol}")
async def signal_indicators(symbol: str, timeframe: str = Query(default="H1")):
    """Indicator dashboard snapshot for *symbol*."""
    if _market_data is None:
        return {"symbol": symbol, "indicators": None}
    try:
        candles = await _market_data.fetch_candles(symbol, timeframe, count=250)
    except Exception as exc:
        logger.warning("Indicator snapshot fetch failed for %s: %s", symbol, exc)
        return {"symbol": symbol, "indicators": None, "error": str(exc)}
    return {"symbol": symbol, "timeframe": timeframe, "indicators": indicator_snapshot(candles)}


# ── Tiers & subscriptions ────────────────────────────────────────────────


@router.get("/tiers")
async def list_tiers():
    """Tier table with active subscriber counts."""
    if _broadcast_engine is None:
        return {"tiers": []}
    counts = _subscription_repo.count_by_tier() if _subscription_repo else {}
    tiers = sorted(_broadcast_engine.tiers.values(), key=lambda t: t.rank)
    return {
        "tiers": [
            {
                "slug": t.slug,
                "name": t.name,
                "rank": t.rank,
                "allowed_priorities": sorted(t.allowed_priorities),
                "delay_minutes": t.delay_minutes,
                "max_signals_per_day": t.max_signals_per_day,
                "includes_sl_tp": t.includes_sl_tp,
                "includes_analysis": t.includes_analysis,
                "includes_vip_channel": t.includes_vip_channel,
                "subscribers": counts.get(t.slug, 0),
            }
            for t in tiers
        ]
    }


@router.post("/subscriptions")
async def subscribe(body: dict):
    """Create or replace a subscription.

    Body: ``{"subscriber_id", "tier_slug", "destination", "period_end"?}``.
    """
    if _subscription_repo is None or _broadcast_engine is None:
        raise HTTPException(status_code=503, detail="Subscriptions not configured")
    tier_slug = body.get("tier_slug")
    if tier_slug not in _broadcast_engine.tiers:
        raise HTTPException(status_code=422, detail=f"Unknown tier: {tier_slug}")
    if not body.get("subscriber_id"):
        raise HTTPException(status_code=422, detail="subscriber_id is required")
    period_end = body.get("period_end")
    sub = _subscription_repo.subscribe(
        subscriber_id=str(body["subscriber_id"]),
        tier_slug=tier_slug,
        destination=body.get("destination"),
        period_start=datetime.now(timezone.utc),
        period_end=datetime.fromisoformat(period_end) if period_end else None,
    )
    return {"subscription": asdict(sub)}


@router.delete("/subscriptions/{subscriber_id}")
async def cancel_subscription(subscriber_id: str):
    if _subscription_repo is None:
        raise HTTPException(status_code=503, detail="Subscriptions not configured")
    if not _subscription_repo.cancel(subscriber_id):
        raise HTTPException(status_code=404, detail=f"No active subscription for {subscriber_id}")
    return {"cancelled": subscriber_id}


# ── Calendar ─────────────────────────────────────────────────────────────


@router.get("/calendar")
async def calendar(hours: int = Query(default=24 * 7, ge=1, le=24 * 14)):
    """Upcoming economic events."""
    if _news_overlay is None:
        return {"events": []}
    events = _news_overlay.upcoming_events(minutes_ahead=hours * 60)
    return {"events": [e.to_dict() for e in events]}
