"""Tests for signalhub.broker and the Telegram channel with mocked HTTP responses."""

import asyncio

import httpx
import pytest

from signalhub.broadcast.telegram import TelegramChannel
from signalhub.broker.base import ExecutionVenue, MarketDataProvider
from signalhub.broker.models import ExecutionReceipt, OrderRequest
from signalhub.broker.oanda_client import OandaClient, lots_to_units
from signalhub.config import Config
from signalhub.strategy.models import Candle, Direction


def _make_config(environment: str = "practice") -> Config:
    return Config(
        telegram_bot_token="123:abc",
        oanda_api_token="test-token",
        oanda_environment=environment,
        db_path="data/signalhub.db",
        log_level="INFO",
        api_port=8080,
        scan_interval_seconds=30,
        min_confidence=40.0,
        dispatch_interval_seconds=5.0,
        delivery_timeout_seconds=10.0,
        candle_count=100,
        candle_fetch_concurrency=4,
        news_guard_minutes=10,
        signalhub_json="signalhub.json",
    )


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip retry backoff delays."""
    async def _sleep(delay):
        return None

    monkeypatch.setattr(asyncio, "sleep", _sleep)


# ── Mock OANDA responses ────────────────────────────────────────────────

MOCK_CANDLES_RESPONSE = {
    "instrument": "EUR_USD",
    "granularity": "M15",
    "candles": [
        {
            "complete": True,
            "volume": 12345,
            "time": "2025-01-10T00:00:00.000000000Z",
            "mid": {"o": "1.09100", "h": "1.09500", "l": "1.08900", "c": "1.09300"},
        },
        {
            "complete": True,
            "volume": 11000,
            "time": "2025-01-10T00:15:00.000000000Z",
            "mid": {"o": "1.09300", "h": "1.09700", "l": "1.09100", "c": "1.09600"},
        },
        {
            "complete": False,
            "volume": 80,
            "time": "2025-01-10T00:30:00.000000000Z",
            "mid": {"o": "1.09600", "h": "1.09650", "l": "1.09550", "c": "1.09610"},
        },
    ],
}

MOCK_ACCOUNTS_RESPONSE = {
    "accounts": [
        {"id": "101-001-12345678-001", "tags": []},
        {"id": "101-001-12345678-002", "tags": []},
    ]
}

MOCK_ORDER_FILL_RESPONSE = {
    "orderFillTransaction": {
        "id": "12345",
        "instrument": "EUR_USD",
        "units": "-3000",
        "price": "1.09500",
        "time": "2025-01-10T12:00:00.000000000Z",
    }
}

MOCK_POSITIONS_RESPONSE = {
    "positions": [
        {
            "instrument": "EUR_USD",
            "long": {"units": "1000", "averagePrice": "1.09300"},
            "short": {"units": "0"},
            "unrealizedPL": "20.00",
        },
        {
            "instrument": "XAU_USD",
            "long": {"units": "0"},
            "short": {"units": "-2", "averagePrice": "2650.10"},
            "unrealizedPL": "-4.00",
        },
    ]
}


# ── OANDA client ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_candles(monkeypatch):
    """Completed candles parsed; the forming bar is dropped."""
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured.update(url=url, params=params)
        return httpx.Response(200, json=MOCK_CANDLES_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("EUR_USD", "M15", count=3)
    assert len(candles) == 2
    c = candles[0]
    assert isinstance(c, Candle)
    assert c.open == pytest.approx(1.091)
    assert c.high == pytest.approx(1.095)
    assert c.low == pytest.approx(1.089)
    assert c.close == pytest.approx(1.093)
    assert c.volume == 12345
    assert captured["url"].endswith("/v3/instruments/EUR_USD/candles")
    assert captured["params"] == {"granularity": "M15", "count": 3, "price": "M"}


@pytest.mark.asyncio
async def test_connected_accounts(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        assert headers["Authorization"] == "Bearer test-token"
        return httpx.Response(200, json=MOCK_ACCOUNTS_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.connected_accounts() == {"101-001-12345678-001", "101-001-12345678-002"}


@pytest.mark.asyncio
async def test_count_open_positions(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        assert url.endswith("/v3/accounts/acc-9/openPositions")
        return httpx.Response(200, json=MOCK_POSITIONS_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.count_open_positions("acc-9") == 2
    positions = await client.list_open_positions("acc-9")
    assert positions[1].symbol == "XAU_USD"
    assert positions[1].net_units == pytest.approx(-2.0)
    assert positions[1].unrealized_pl == pytest.approx(-4.0)


@pytest.mark.asyncio
async def test_order_payload(monkeypatch):
    """Market order JSON matches OANDA v20 (direction, units, SL, TP)."""
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured.update(url=url, body=json)
        return httpx.Response(200, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    receipt = await client.open_position("acc-1", "EUR_USD", Direction.SELL, 0.03, 1.0980123, 1.0900)

    assert isinstance(receipt, ExecutionReceipt)
    assert receipt.order_id == "12345"
    assert receipt.account_id == "acc-1"
    assert receipt.fill_price == pytest.approx(1.095)
    assert receipt.direction == Direction.SELL

    assert captured["url"].endswith("/v3/accounts/acc-1/orders")
    order_body = captured["body"]["order"]
    assert order_body["type"] == "MARKET"
    assert order_body["instrument"] == "EUR_USD"
    assert order_body["units"] == "-3000"
    assert order_body["stopLossOnFill"] == {"price": "1.09801"}
    assert order_body["takeProfitOnFill"] == {"price": "1.09000"}


@pytest.mark.asyncio
async def test_place_order_gold_precision(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured.update(json)
        return httpx.Response(200, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    await client.place_order(OrderRequest("acc-1", "XAU_USD", Direction.BUY, 0.03, 2640.123, 2670.5))
    assert captured["order"]["stopLossOnFill"]["price"] == "2640.12"
    assert captured["order"]["units"] == "3"
    assert "clientExtensions" not in captured["order"]


@pytest.mark.asyncio
async def test_retry_on_server_error(monkeypatch, no_sleep):
    client = OandaClient(_make_config())
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        status = 503 if len(calls) < 3 else 200
        return httpx.Response(status, json=MOCK_ACCOUNTS_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert len(await client.connected_accounts()) == 2
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retries_exhausted(monkeypatch, no_sleep):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.ConnectError):
        await client.connected_accounts()


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch, no_sleep):
    client = OandaClient(_make_config())
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        return httpx.Response(401, json={"errorMessage": "bad token"}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.connected_accounts()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_order_tagged_with_binding(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured.update(json)
        return httpx.Response(200, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    await client.open_position("acc-1", "EUR_USD", Direction.BUY, 0.01, 1.09, 1.10, tag="gold-momentum")
    assert captured["order"]["clientExtensions"] == {"tag": "gold-momentum"}
    assert captured["order"]["units"] == "1000"


@pytest.mark.asyncio
async def test_unfilled_order_raises(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        body = {"orderCancelTransaction": {"reason": "INSUFFICIENT_MARGIN"}}
        return httpx.Response(201, json=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(RuntimeError, match="INSUFFICIENT_MARGIN"):
        await client.open_position("acc-1", "EUR_USD", Direction.BUY, 0.01, 1.09, 1.10)


@pytest.mark.asyncio
async def test_order_not_resent_after_read_timeout(monkeypatch, no_sleep):
    """A timed-out order may already be filled, so it is submitted once only."""
    client = OandaClient(_make_config())
    posts = []

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        posts.append(json)
        if len(posts) == 1:
            raise httpx.ReadTimeout("read timed out")
        return httpx.Response(200, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(httpx.ReadTimeout):
        await client.open_position("acc-1", "EUR_USD", Direction.BUY, 0.01, 1.09, 1.10)
    assert len(posts) == 1


@pytest.mark.asyncio
async def test_order_not_resent_after_gateway_error(monkeypatch, no_sleep):
    client = OandaClient(_make_config())
    posts = []

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        posts.append(json)
        return httpx.Response(502, json={}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(httpx.HTTPStatusError):
        await client.open_position("acc-1", "EUR_USD", Direction.BUY, 0.01, 1.09, 1.10)
    assert len(posts) == 1


@pytest.mark.asyncio
async def test_order_retried_when_never_sent(monkeypatch, no_sleep):
    client = OandaClient(_make_config())
    posts = []

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        posts.append(json)
        if len(posts) == 1:
            raise httpx.ConnectError("connection refused")
        if len(posts) == 2:
            return httpx.Response(503, json={}, request=httpx.Request("POST", url))
        return httpx.Response(200, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    receipt = await client.open_position("acc-1", "EUR_USD", Direction.SELL, 0.03, 1.10, 1.09)
    assert receipt.order_id == "12345"
    assert len(posts) == 3


@pytest.mark.asyncio
async def test_flat_positions_not_counted(monkeypatch):
    client = OandaClient(_make_config())
    body = {"positions": [
        {"instrument": "EUR_USD", "long": {"units": "0"}, "short": {"units": "0"}, "unrealizedPL": "0"},
        {"instrument": "GBP_USD", "long": {"units": "500"}, "short": {"units": "0"}, "unrealizedPL": "1.5"},
    ]}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(200, json=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.count_open_positions("acc-1") == 1


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after(monkeypatch):
    client = OandaClient(_make_config())
    delays = []
    statuses = [429, 200]

    async def _sleep(delay):
        delays.append(delay)

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        status = statuses.pop(0)
        return httpx.Response(
            status,
            json=MOCK_ACCOUNTS_RESPONSE,
            headers={"Retry-After": "7"} if status == 429 else None,
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    await client.connected_accounts()
    assert delays == [7.0]


def test_lots_to_units():
    assert lots_to_units("EUR_USD", 0.03, Direction.BUY) == 3000
    assert lots_to_units("EUR_USD", 0.03, Direction.SELL) == -3000
    assert lots_to_units("XAU_USD", 0.05, Direction.BUY) == 5
    assert lots_to_units("XAU_USD", 0.001, Direction.BUY) == 1


def test_client_satisfies_protocols():
    client = OandaClient(_make_config())
    assert isinstance(client, MarketDataProvider)
    assert isinstance(client, ExecutionVenue)


def test_environment_switching():
    """Practice URL for practice, live URL for live."""
    assert OandaClient(_make_config("practice"))._base_url == "https://api-fxpractice.oanda.com"
    assert OandaClient(_make_config("live"))._base_url == "https://api-fxtrade.oanda.com"


# ── Telegram channel ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_telegram_send_ok(monkeypatch):
    channel = TelegramChannel("123:abc")
    captured = {}

    async def _mock_post(self, url, *, json=None, timeout=None):
        captured.update(url=url, body=json)
        return httpx.Response(200, json={"ok": True, "result": {}}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("-100123", "<b>hi</b>") is True
    assert captured["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
    assert captured["body"]["chat_id"] == "-100123"
    assert captured["body"]["parse_mode"] == "HTML"


@pytest.mark.asyncio
async def test_telegram_rejection_returns_false(monkeypatch):
    channel = TelegramChannel("123:abc")

    async def _mock_post(self, url, *, json=None, timeout=None):
        return httpx.Response(
            400, json={"ok": False, "description": "chat not found"}, request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("nobody", "hi") is False


@pytest.mark.asyncio
async def test_telegram_rate_limit_retried(monkeypatch, no_sleep):
    channel = TelegramChannel("123:abc")
    responses = [
        (429, {"ok": False, "parameters": {"retry_after": 3}}),
        (200, {"ok": True}),
    ]

    async def _mock_post(self, url, *, json=None, timeout=None):
        status, body = responses.pop(0)
        return httpx.Response(status, json=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("-100123", "hi") is True
    assert responses == []


@pytest.mark.asyncio
async def test_telegram_unreachable_retried_then_fails(monkeypatch, no_sleep):
    channel = TelegramChannel("123:abc")
    posts = []

    async def _mock_post(self, url, *, json=None, timeout=None):
        posts.append(json)
        raise httpx.ConnectTimeout("timed out")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("-100123", "hi") is False
    assert len(posts) == 3


@pytest.mark.asyncio
async def test_telegram_read_timeout_not_resent(monkeypatch, no_sleep):
    """The message may already be in the chat, so a read timeout is final."""
    channel = TelegramChannel("123:abc")
    posts = []

    async def _mock_post(self, url, *, json=None, timeout=None):
        posts.append(json)
        if len(posts) == 1:
            raise httpx.ReadTimeout("read timed out")
        return httpx.Response(200, json={"ok": True}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("chat-1", "hi") is False
    assert len(posts) == 1


@pytest.mark.asyncio
async def test_telegram_gateway_error_not_resent(monkeypatch, no_sleep):
    channel = TelegramChannel("123:abc")
    posts = []

    async def _mock_post(self, url, *, json=None, timeout=None):
        posts.append(json)
        return httpx.Response(502, text="Bad Gateway", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await channel.send("chat-1", "hi") is False
    assert len(posts) == 1
