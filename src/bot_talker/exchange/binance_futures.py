from __future__ import annotations

import asyncio
import hmac
import logging
import time
from decimal import Decimal, InvalidOperation
from hashlib import sha256
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from bot_talker.errors import GatewayError, SymbolRulesError
from bot_talker.types import (
    AccountBalance,
    OrderRequest,
    OrderType,
    PriceQuote,
    PriceSource,
    SymbolRules,
)

logger = logging.getLogger("bot_talker.exchange")

_DEFAULT_RECV_WINDOW_MS = 5_000
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_RETRY_BASE_SECONDS = 0.5
_DEFAULT_RETRY_MAX_SECONDS = 8.0


class BinanceApiError(GatewayError):
    def __init__(self, *, status_code: int, payload: Any):
        super().__init__(_error_message(status_code=status_code, payload=payload))
        self.status_code = status_code
        self.payload = payload


def _error_message(*, status_code: int, payload: Any) -> str:
    if isinstance(payload, dict) and payload.get("msg"):
        return f"{payload['msg']} (code={payload.get('code')})"
    return f"Binance API error: status={status_code} payload={payload!r}"


def _normalize_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def build_query_string(params: dict[str, Any]) -> str:
    items: list[tuple[str, str]] = []
    for key in sorted(params.keys()):
        value = params[key]
        if value is None:
            continue
        items.append((key, _normalize_value(value)))
    return urlencode(items)


def sign_query_string(query_string: str, api_secret: str) -> str:
    mac = hmac.new(api_secret.encode("utf-8"), query_string.encode("utf-8"), sha256)
    return mac.hexdigest()


def _to_decimal(value: Any, *, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise GatewayError(f"malformed {field} in exchange response: {value!r}") from e


def parse_balances(raw: Any) -> list[AccountBalance]:
    if not isinstance(raw, list):
        raise GatewayError("malformed balance response: expected a list")
    balances: list[AccountBalance] = []
    for row in raw:
        if not isinstance(row, dict) or "asset" not in row:
            continue
        balances.append(
            AccountBalance(
                asset=str(row["asset"]).upper(),
                available=_to_decimal(row.get("availableBalance", "0"), field="availableBalance"),
                total=_to_decimal(row.get("balance", "0"), field="balance"),
            )
        )
    return balances


def extract_symbol_rules(
    exchange_info: dict[str, Any],
    *,
    symbol: str,
    order_type: OrderType = "MARKET",
) -> SymbolRules:
    symbols = exchange_info.get("symbols", [])
    if not isinstance(symbols, list):
        raise SymbolRulesError("exchange info has no symbol list")
    entry = next(
        (s for s in symbols if isinstance(s, dict) and s.get("symbol") == symbol),
        None,
    )
    if entry is None:
        raise SymbolRulesError(f"symbol not listed on exchange: {symbol}")

    filters = entry.get("filters", [])
    if not isinstance(filters, list):
        raise SymbolRulesError(f"no filters for {symbol}")
    by_type = {f.get("filterType"): f for f in filters if isinstance(f, dict)}

    # Market orders are bounded by MARKET_LOT_SIZE when the exchange publishes it.
    lot = by_type.get("LOT_SIZE")
    if order_type == "MARKET" and "MARKET_LOT_SIZE" in by_type:
        lot = by_type["MARKET_LOT_SIZE"]
    if lot is None:
        raise SymbolRulesError(f"no lot size filter for {symbol}")

    try:
        min_qty = Decimal(str(lot.get("minQty", "0")))
        step_size = Decimal(str(lot.get("stepSize", "0")))
    except InvalidOperation as e:
        raise SymbolRulesError(f"malformed lot size filter for {symbol}") from e
    if min_qty <= 0 or step_size <= 0:
        raise SymbolRulesError(f"non-positive lot size filter for {symbol}")
    return SymbolRules(symbol=symbol, min_quantity=min_qty, step_size=step_size)


class BinanceFuturesClient:
    """
    Async REST client for Binance USD-M futures.

    Every public method either returns parsed data or raises `GatewayError`.
    Only GET requests are retried; order and leverage POSTs go out at most once.
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_secret: str,
        base_url: str = "https://demo-fapi.binance.com",
        timeout_seconds: float = 10.0,
        recv_window_ms: int = _DEFAULT_RECV_WINDOW_MS,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_base_seconds: float = _DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = _DEFAULT_RETRY_MAX_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._recv_window_ms = int(max(1, recv_window_ms))
        self._max_retries = int(max(0, max_retries))
        self._retry_base_seconds = float(max(0.0, retry_base_seconds))
        self._retry_max_seconds = float(max(self._retry_base_seconds, retry_max_seconds))
        self._time_offset_ms = 0
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"X-MBX-APIKEY": api_key} if api_key else {},
            transport=transport,
        )

    @property
    def time_offset_ms(self) -> int:
        return self._time_offset_ms

    async def aclose(self) -> None:
        await self._client.aclose()

    async def server_time_ms(self) -> int:
        data = await self._request("GET", "/fapi/v1/time", signed=False, params={})
        try:
            return int(data["serverTime"])
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"malformed server time response: {data!r}") from e

    async def balances(self) -> list[AccountBalance]:
        raw = await self._request("GET", "/fapi/v2/balance", signed=True, params={})
        return parse_balances(raw)

    async def price(self, symbol: str, source: PriceSource = "last") -> PriceQuote:
        if source == "mark":
            data = await self._request(
                "GET",
                "/fapi/v1/premiumIndex",
                signed=False,
                params={"symbol": symbol},
            )
            field = "markPrice"
        else:
            data = await self._request(
                "GET",
                "/fapi/v1/ticker/price",
                signed=False,
                params={"symbol": symbol},
            )
            field = "price"
        if not isinstance(data, dict) or field not in data:
            raise GatewayError(f"malformed price response for {symbol}: {data!r}")
        return PriceQuote(
            symbol=symbol,
            price=_to_decimal(data[field], field=field),
            time_ms=int(data.get("time", 0) or 0),
            source=source,
        )

    async def set_leverage(self, symbol: str, leverage: int) -> int:
        data = await self._request(
            "POST",
            "/fapi/v1/leverage",
            signed=True,
            params={"symbol": symbol, "leverage": int(leverage)},
        )
        if isinstance(data, dict) and "leverage" in data:
            return int(data["leverage"])
        return int(leverage)

    async def place_order(self, order: OrderRequest) -> str:
        params: dict[str, Any] = {
            "symbol": order.symbol,
            "side": order.side,
            "type": order.order_type,
            "quantity": order.quantity,
        }
        if order.order_type == "LIMIT":
            if order.price is None:
                raise ValueError("price is required for LIMIT orders")
            params["price"] = order.price
            params["timeInForce"] = "GTC"
        data = await self._request("POST", "/fapi/v1/order", signed=True, params=params)
        order_id = data.get("orderId") if isinstance(data, dict) else None
        if order_id is None:
            raise GatewayError(f"order response carries no orderId: {data!r}")
        return str(order_id)

    async def exchange_info(self) -> dict[str, Any]:
        data = await self._request("GET", "/fapi/v1/exchangeInfo", signed=False, params={})
        return cast(dict[str, Any], data)

    async def symbol_rules(self, symbol: str, order_type: OrderType = "MARKET") -> SymbolRules:
        info = await self.exchange_info()
        return extract_symbol_rules(info, symbol=symbol, order_type=order_type)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        signed: bool,
        params: dict[str, Any],
    ) -> Any:
        # A repeated POST could open a second position.
        max_retries = self._max_retries if method == "GET" else 0
        attempt = 0
        while True:
            request_params = {k: v for k, v in params.items() if v is not None}
            if signed:
                if not self._api_secret:
                    raise GatewayError("BINANCE_DEMO_SECRET is required for signed endpoints")
                request_params.setdefault("recvWindow", self._recv_window_ms)
                request_params.setdefault(
                    "timestamp",
                    int(time.time() * 1000) + self._time_offset_ms,
                )
            # Sent in the same order and formatting as signed.
            request_params = {
                k: _normalize_value(request_params[k]) for k in sorted(request_params)
            }
            if signed:
                query_string = build_query_string(request_params)
                request_params["signature"] = sign_query_string(query_string, self._api_secret)

            try:
                response = await self._client.request(method, path, params=request_params)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= max_retries:
                    raise GatewayError(f"{method} {path} failed: {type(e).__name__}: {e}") from e
                await asyncio.sleep(self._retry_delay_seconds(attempt=attempt, response=None))
                attempt += 1
                continue

            if response.status_code >= 400:
                payload: Any
                try:
                    payload = response.json()
                except ValueError:
                    payload = response.text

                if signed and _is_timestamp_error(payload):
                    synced = await self._sync_time_offset_ms()
                    if synced and attempt < max_retries:
                        attempt += 1
                        continue

                if (
                    _should_retry_http_error(status_code=response.status_code)
                    and attempt < max_retries
                ):
                    await asyncio.sleep(
                        self._retry_delay_seconds(attempt=attempt, response=response)
                    )
                    attempt += 1
                    continue

                raise BinanceApiError(status_code=response.status_code, payload=payload)

            try:
                return response.json()
            except ValueError as e:
                raise GatewayError(f"{method} {path} returned a non-JSON body") from e

    async def _sync_time_offset_ms(self) -> bool:
        try:
            response = await self._client.request("GET", "/fapi/v1/time", params={})
            if response.status_code >= 400:
                return False
            server_ms = int(response.json()["serverTime"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError):
            logger.warning("clock_resync_failed")
            return False
        self._time_offset_ms = server_ms - int(time.time() * 1000)
        logger.info("clock_resynced", extra={"offset_ms": self._time_offset_ms})
        return True

    def _retry_delay_seconds(
        self,
        *,
        attempt: int,
        response: httpx.Response | None,
    ) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    value = float(retry_after)
                    if value > 0:
                        return min(value, self._retry_max_seconds)
                except ValueError:
                    pass
        delay = self._retry_base_seconds * (2**attempt)
        return float(min(delay, self._retry_max_seconds))


def _is_timestamp_error(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    try:
        return int(payload.get("code", 0)) == -1021
    except (TypeError, ValueError):
        return False


def _should_retry_http_error(*, status_code: int) -> bool:
    return status_code in (418, 429) or status_code >= 500
