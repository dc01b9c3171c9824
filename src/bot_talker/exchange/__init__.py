from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from bot_talker.exchange.binance_futures import BinanceApiError, BinanceFuturesClient
from bot_talker.exchange.gateway import ExchangeGateway
from bot_talker.settings import Settings

__all__ = ["BinanceApiError", "BinanceFuturesClient", "ExchangeGateway", "open_gateway"]


@asynccontextmanager
async def open_gateway(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[BinanceFuturesClient]:
    """
    One client per session, shared by the checker and every executor run.
    """
    client = BinanceFuturesClient(
        api_key=settings.binance_api_key.strip(),
        api_secret=settings.binance_api_secret.strip(),
        base_url=settings.base_url(),
        timeout_seconds=settings.request_timeout_seconds,
        recv_window_ms=settings.recv_window_ms,
        max_retries=settings.max_retries,
        transport=transport,
    )
    try:
        yield client
    finally:
        await client.aclose()
