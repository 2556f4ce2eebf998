"""OANDA v20 REST API async client.

Implements both ``MarketDataProvider`` and ``ExecutionVenue``: candle
fetching, account discovery, open-position counts and market orders for any
account the token can see.
"""

import asyncio
import logging
from typing import Optional

import httpx

from signalhub.broker.models import (
    ExecutionReceipt,
    OpenPosition,
    OrderRequest,
    lots_to_units,
)
from signalhub.config import Config
from signalhub.strategy.models import Candle, Direction, price_digits

logger = logging.getLogger("signalhub.broker")

__all__ = ["OandaClient", "lots_to_units"]

# Retry settings
_MAX_ATTEMPTS = 3
_BACKOFF_BASE = 2.0  # seconds; doubles each attempt
_TRANSIENT_STATUS = frozenset({429, 502, 503, 504})
# Responses and failures that prove a non-idempotent request was never processed
_UNPROCESSED_STATUS = frozenset({429, 503})
_UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)
_REQUEST_TIMEOUT = 30.0


def _backoff(attempt: int, resp: Optional[httpx.Response] = None) -> float:
    """Delay before the next attempt; a 429 ``Retry-After`` header wins."""
    if resp is not None and resp.status_code == 429:
        retry_after = resp.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
    return _BACKOFF_BASE * (2 ** attempt)


def _format_price(symbol: str, value: float) -> str:
    return f"{value:.{price_digits(symbol)}f}"


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.oanda_base_url
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    # ── Transport ────────────────────────────────────────────────────────

    async def _call(self, method: str, path: str, idempotent: bool = True, **kwargs) -> dict:
        """Issue *method* against *path* and return the decoded JSON body.

        Rate limits, gateway errors and transport failures are retried with
        exponential backoff; any other HTTP error is raised at once.  With
        ``idempotent=False`` only failures where the request never reached
        the venue are retried, so an order is submitted at most once.
        """
        retry_status = _TRANSIENT_STATUS if idempotent else _UNPROCESSED_STATUS
        retry_errors = httpx.TransportError if idempotent else _UNSENT_ERRORS
        url = f"{self._base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(_MAX_ATTEMPTS):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url, headers=self._headers, timeout=_REQUEST_TIMEOUT, **kwargs,
                    )
            except retry_errors as exc:
                last_error = exc
                delay = _backoff(attempt)
                logger.warning(
                    "OANDA %s %s failed (%s), attempt %d/%d, waiting %.1fs",
                    method.upper(), path, exc, attempt + 1, _MAX_ATTEMPTS, delay,
                )
                await asyncio.sleep(delay)
                continue

            if resp.status_code in retry_status:
                last_error = httpx.HTTPStatusError(
                    f"OANDA returned {resp.status_code}", request=resp.request, response=resp,
                )
                delay = _backoff(attempt, resp)
                logger.warning(
                    "OANDA %s %s returned %d, attempt %d/%d, waiting %.1fs",
                    method.upper(), path, resp.status_code, attempt + 1, _MAX_ATTEMPTS, delay,
                )
                await asyncio.sleep(delay)
                continue

            resp.raise_for_status()
            return resp.json()

        raise last_error  # type: ignore[misc]

    # ── Market data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        timeframe: str,
        count: int = 100,
    ) -> list[Candle]:
        """Fetch mid-price candles for *symbol*.

        Args:
            symbol: e.g. ``"EUR_USD"``
            timeframe: OANDA granularity, e.g. ``"M15"``, ``"H1"``
            count: number of candles to request (max 5000)

        Returns:
            Completed candles, oldest first.  The still-forming bar is dropped
            so indicators never see a moving close.
        """
        data = await self._call(
            "get",
            f"/v3/instruments/{symbol}/candles",
            params={"granularity": timeframe, "count": count, "price": "M"},
        )
        return [
            Candle(
                time=raw["time"],
                open=float(raw["mid"]["o"]),
                high=float(raw["mid"]["h"]),
                low=float(raw["mid"]["l"]),
                close=float(raw["mid"]["c"]),
                volume=int(raw.get("volume", 0)),
            )
            for raw in data.get("candles", [])
            if raw.get("complete", True)
        ]

    # ── Accounts ─────────────────────────────────────────────────────────

    async def connected_accounts(self) -> set[str]:
        """Ids of every account visible to the API token."""
        data = await self._call("get", "/v3/accounts")
        return {acct["id"] for acct in data.get("accounts", [])}

    async def list_open_positions(self, account_id: str) -> list[OpenPosition]:
        data = await self._call("get", f"/v3/accounts/{account_id}/openPositions")
        positions = []
        for raw in data.get("positions", []):
            net = float(raw.get("long", {}).get("units", "0")) + float(raw.get("short", {}).get("units", "0"))
            if net == 0:
                continue
            positions.append(
                OpenPosition(
                    symbol=raw["instrument"],
                    net_units=net,
                    unrealized_pl=float(raw.get("unrealizedPL", "0")),
                )
            )
        return positions

    async def count_open_positions(self, account_id: str) -> int:
        """Instruments with non-zero net exposure on *account_id*."""
        return len(await self.list_open_positions(account_id))

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(self, order: OrderRequest) -> ExecutionReceipt:
        """Submit a market order with stop-loss and take-profit on fill."""
        body = {
            "type": "MARKET",
            "instrument": order.symbol,
            "units": str(order.units),
            "stopLossOnFill": {"price": _format_price(order.symbol, order.stop_loss)},
            "takeProfitOnFill": {"price": _format_price(order.symbol, order.take_profit)},
        }
        if order.tag:
            body["clientExtensions"] = {"tag": order.tag}

        data = await self._call(
            "post", f"/v3/accounts/{order.account_id}/orders", idempotent=False, json={"order": body},
        )

        fill = data.get("orderFillTransaction")
        if fill is None:
            reason = data.get("orderCancelTransaction", {}).get("reason", "no fill")
            raise RuntimeError(f"{order.symbol} order on {order.account_id} not filled: {reason}")
        return ExecutionReceipt(
            order_id=fill["id"],
            account_id=order.account_id,
            symbol=fill["instrument"],
            units=int(float(fill["units"])),
            fill_price=float(fill["price"]),
            time=fill["time"],
        )

    async def open_position(
        self,
        account_id: str,
        symbol: str,
        direction: Direction,
        size: float,
        stop_loss: float,
        take_profit: float,
        tag: Optional[str] = None,
    ) -> ExecutionReceipt:
        """Open a market position sized in lots."""
        order = OrderRequest(account_id, symbol, direction, size, stop_loss, take_profit, tag)
        logger.info(
            "Placing %s %s %d units on %s (SL %s, TP %s)",
            direction.value, symbol, order.units, account_id,
            _format_price(symbol, stop_loss), _format_price(symbol, take_profit),
        )
        return await self.place_order(order)
