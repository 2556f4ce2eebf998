"""SignalHub — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
wires the scheduler, broadcast engine and delivery dispatcher together.
"""

import logging

from fastapi import FastAPI

from signalhub.api.routers import router

app = FastAPI(title="SignalHub Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("signalhub")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── Wiring ───────────────────────────────────────────────────────────────


def build_services(config):
    """Construct every long-lived component from *config*.

    Returns a dict with ``scheduler``, ``dispatcher``, ``broadcast_engine``,
    ``broker``, ``news_overlay`` and the repos.
    """
    from signalhub.broadcast.dispatcher import DeliveryDispatcher
    from signalhub.broadcast.engine import BroadcastEngine
    from signalhub.broadcast.telegram import TelegramChannel
    from signalhub.broker.oanda_client import OandaClient
    from signalhub.config import load_bindings, load_tiers
    from signalhub.news.overlay import NewsOverlay
    from signalhub.repos.db import init_db
    from signalhub.repos.delivery_repo import DeliveryRepo
    from signalhub.repos.signal_repo import SignalRepo
    from signalhub.repos.subscription_repo import SubscriptionRepo
    from signalhub.scheduler import MarketScanScheduler

    init_db(config.db_path)

    signal_repo = SignalRepo(config.db_path)
    subscription_repo = SubscriptionRepo(config.db_path)
    delivery_repo = DeliveryRepo(config.db_path)
    tiers = load_tiers(config.signalhub_json)
    bindings = load_bindings(config.signalhub_json)

    broker = OandaClient(config)
    channel = TelegramChannel(config.telegram_bot_token, timeout=config.delivery_timeout_seconds)
    news_overlay = NewsOverlay()

    broadcast_engine = BroadcastEngine(
        signal_repo=signal_repo,
        subscription_repo=subscription_repo,
        delivery_repo=delivery_repo,
        tiers=tiers,
        channel=channel,
        send_timeout=config.delivery_timeout_seconds,
    )
    dispatcher = DeliveryDispatcher(
        delivery_repo=delivery_repo,
        subscription_repo=subscription_repo,
        tiers=tiers,
        channel=channel,
        send_timeout=config.delivery_timeout_seconds,
        poll_interval=config.dispatch_interval_seconds,
        broadcast_engine=broadcast_engine,
    )
    scheduler = MarketScanScheduler(
        config=config,
        market_data=broker,
        venue=broker,
        bindings=bindings,
        publisher=broadcast_engine,
        news_overlay=news_overlay,
    )
    logger.info("Loaded %d binding(s) and %d tier(s)", len(bindings), len(tiers))

    return {
        "scheduler": scheduler,
        "dispatcher": dispatcher,
        "broadcast_engine": broadcast_engine,
        "broker": broker,
        "news_overlay": news_overlay,
        "signal_repo": signal_repo,
        "subscription_repo": subscription_repo,
        "delivery_repo": delivery_repo,
    }


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from signalhub.config import load_config

    parser = argparse.ArgumentParser(description="SignalHub signal engine")
    parser.add_argument(
        "--mode",
        choices=["serve", "scan-once", "dispatch-once"],
        default="serve",
        help="serve: API + scheduler + dispatcher; scan-once / dispatch-once: a single pass",
    )
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Serve the API without starting the scheduler (start via POST /scheduler/start)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "scan-once":
        asyncio.run(_scan_once(config))
    elif args.mode == "dispatch-once":
        asyncio.run(_dispatch_once(config))
    else:
        asyncio.run(_serve(config, autostart=not args.no_autostart))


async def _scan_once(config) -> None:
    services = build_services(config)
    results = await services["scheduler"].run_cycle()
    for r in results:
        logger.info("%s", r)


async def _dispatch_once(config) -> None:
    services = build_services(config)
    services["dispatcher"].recover()
    outcome = await services["dispatcher"].run_due()
    logger.info("Dispatch outcome: %s", outcome)


async def _serve(config, autostart: bool = True) -> None:
    """Start the API server, the scheduler and the dispatcher concurrently."""
    import asyncio

    import uvicorn

    from signalhub.api.routers import configure_routers

    services = build_services(config)
    configure_routers(
        scheduler=services["scheduler"],
        broadcast_engine=services["broadcast_engine"],
        signal_repo=services["signal_repo"],
        subscription_repo=services["subscription_repo"],
        delivery_repo=services["delivery_repo"],
        market_data=services["broker"],
        news_overlay=services["news_overlay"],
    )

    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=config.api_port, log_level="info")
    )

    if autostart:
        services["scheduler"].start()
    dispatcher_task = asyncio.create_task(services["dispatcher"].run())

    logger.info("API available at http://localhost:%d", config.api_port)
    try:
        await server.serve()
    finally:
        await services["scheduler"].stop()
        services["dispatcher"].stop()
        await dispatcher_task
        logger.info("SignalHub stopped.")


if __name__ == "__main__":
    _run_cli()
