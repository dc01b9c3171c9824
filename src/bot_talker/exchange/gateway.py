from __future__ import annotations

from typing import Protocol

from bot_talker.types import (
    AccountBalance,
    OrderRequest,
    OrderType,
    PriceQuote,
    PriceSource,
    SymbolRules,
)


class ExchangeGateway(Protocol):
    """
    What the checker and executor need from an exchange.

    Implementations raise `bot_talker.errors.GatewayError` on any failure.
    """

    async def server_time_ms(self) -> int: ...

    async def balances(self) -> list[AccountBalance]: ...

    async def price(self, symbol: str, source: PriceSource = "last") -> PriceQuote: ...

    async def set_leverage(self, symbol: str, leverage: int) -> int: ...

    async def place_order(self, order: OrderRequest) -> str: ...

    async def symbol_rules(
        self,
        symbol: str,
        order_type: OrderType = "MARKET",
    ) -> SymbolRules: ...
