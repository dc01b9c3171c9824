import asyncio
import time
from decimal import Decimal

import httpx
import pytest

from bot_talker.errors import GatewayError
from bot_talker.exchange.binance_futures import BinanceApiError, BinanceFuturesClient
from bot_talker.types import OrderRequest


def _client(handler, **kwargs) -> BinanceFuturesClient:
    params = {"api_key": "k", "api_secret": "s", "retry_base_seconds": 0}
    params.update(kwargs)
    return BinanceFuturesClient(transport=httpx.MockTransport(handler), **params)


def _run(client: BinanceFuturesClient, coro_factory):
    async def _go():
        try:
            return await coro_factory(client)
        finally:
            await client.aclose()

    return asyncio.run(_go())


def test_get_retries_on_timeout_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("timeout", request=request)
        return httpx.Response(200, json={"serverTime": 1234567890})

    server_time = _run(_client(handler, max_retries=1), lambda c: c.server_time_ms())

    assert server_time == 1234567890
    assert calls["n"] == 2


def test_get_retries_on_5xx_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(500, json={"code": -1000, "msg": "internal error"})
        return httpx.Response(200, json={"symbol": "BTCUSDT", "price": "100000.10", "time": 1})

    quote = _run(_client(handler, max_retries=1), lambda c: c.price("BTCUSDT"))

    assert quote.price == Decimal("100000.10")
    assert calls["n"] == 2


def test_order_post_is_never_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(
            503,
            json={"code": -1001, "msg": "Internal error; unable to process."},
        )

    order = OrderRequest(symbol="BTCUSDT", side="BUY", quantity=Decimal("0.010"))
    with pytest.raises(BinanceApiError) as exc_info:
        _run(_client(handler, max_retries=3), lambda c: c.place_order(order))

    assert calls["n"] == 1
    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "Internal error; unable to process. (code=-1001)"


def test_transport_error_becomes_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayError, match="ConnectError"):
        _run(_client(handler, max_retries=0), lambda c: c.server_time_ms())


def test_place_market_order_sends_signed_params() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/fapi/v1/order"
        assert request.headers["X-MBX-APIKEY"] == "k"
        captured.update(dict(request.url.params))
        return httpx.Response(200, json={"orderId": 987654321, "status": "NEW"})

    order = OrderRequest(symbol="BTCUSDT", side="BUY", quantity=Decimal("0.010"))
    order_id = _run(_client(handler), lambda c: c.place_order(order))

    assert order_id == "987654321"
    assert captured["symbol"] == "BTCUSDT"
    assert captured["side"] == "BUY"
    assert captured["type"] == "MARKET"
    assert captured["quantity"] == "0.010"
    assert "price" not in captured
    assert "signature" in captured
    assert "timestamp" in captured


def test_place_limit_order_sends_price_and_time_in_force() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(dict(request.url.params))
        return httpx.Response(200, json={"orderId": 1})

    order = OrderRequest(
        symbol="BTCUSDT",
        side="SELL",
        quantity=Decimal("0.002"),
        order_type="LIMIT",
        price=Decimal("109580"),
    )
    _run(_client(handler), lambda c: c.place_order(order))

    assert captured["type"] == "LIMIT"
    assert captured["price"] == "109580"
    assert captured["timeInForce"] == "GTC"


def test_balances_are_parsed_as_decimals() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/fapi/v2/balance"
        return httpx.Response(
            200,
            json=[
                {"asset": "USDT", "balance": "1500.5", "availableBalance": "1000.25"},
                {"asset": "BNB", "balance": "0", "availableBalance": "0"},
            ],
        )

    balances = _run(_client(handler), lambda c: c.balances())

    assert balances[0].asset == "USDT"
    assert balances[0].available == Decimal("1000.25")
    assert balances[0].total == Decimal("1500.5")
    assert len(balances) == 2


def test_mark_price_uses_premium_index() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/fapi/v1/premiumIndex"
        return httpx.Response(200, json={"symbol": "BTCUSDT", "markPrice": "99876.5", "time": 7})

    quote = _run(_client(handler), lambda c: c.price("BTCUSDT", "mark"))

    assert quote.price == Decimal("99876.5")
    assert quote.source == "mark"
    assert quote.time_ms == 7


def test_set_leverage_posts_symbol_and_leverage() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/fapi/v1/leverage"
        captured.update(dict(request.url.params))
        return httpx.Response(200, json={"leverage": 10, "symbol": "BTCUSDT"})

    applied = _run(_client(handler), lambda c: c.set_leverage("BTCUSDT", 10))

    assert applied == 10
    assert captured["leverage"] == "10"


def test_signed_get_syncs_clock_on_timestamp_error() -> None:
    calls = {"balance": 0, "time": 0}
    captured_recv_window: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/fapi/v2/balance":
            calls["balance"] += 1
            captured_recv_window.append(request.url.params.get("recvWindow", ""))
            if calls["balance"] == 1:
                return httpx.Response(
                    400,
                    json={
                        "code": -1021,
                        "msg": "Timestamp for this request was outside of the recvWindow.",
                    },
                )
            return httpx.Response(200, json=[])
        if request.url.path == "/fapi/v1/time":
            calls["time"] += 1
            return httpx.Response(200, json={"serverTime": int(time.time() * 1000) + 2000})
        raise AssertionError(f"unexpected path: {request.url.path}")

    client = _client(handler, max_retries=2)
    balances = _run(client, lambda c: c.balances())

    assert balances == []
    assert calls["balance"] == 2
    assert calls["time"] == 1
    assert "5000" in captured_recv_window
    assert client.time_offset_ms > 1000


def test_malformed_price_is_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"symbol": "BTCUSDT"})

    with pytest.raises(GatewayError, match="malformed price"):
        _run(_client(handler), lambda c: c.price("BTCUSDT"))


def test_retry_after_is_capped_by_retry_max() -> None:
    client = BinanceFuturesClient(api_key="", api_secret="", retry_max_seconds=2.0)
    response = httpx.Response(429, headers={"Retry-After": "3600"})
    try:
        assert client._retry_delay_seconds(attempt=0, response=response) == 2.0
        response = httpx.Response(429, headers={"Retry-After": "1"})
        assert client._retry_delay_seconds(attempt=0, response=response) == 1.0
    finally:
        asyncio.run(client.aclose())
