from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from bot_talker.errors import GatewayError, SymbolRulesError
from bot_talker.exchange.gateway import ExchangeGateway
from bot_talker.types import OrderType, SymbolRules


class SymbolRulesProvider(Protocol):
    async def rules_for(self, symbol: str, order_type: OrderType = "MARKET") -> SymbolRules: ...


class StaticSymbolRules:
    """Lot size rules taken from configuration."""

    def __init__(self, rules: Mapping[str, SymbolRules]) -> None:
        self._rules = {symbol.upper(): r for symbol, r in rules.items()}

    async def rules_for(self, symbol: str, order_type: OrderType = "MARKET") -> SymbolRules:
        try:
            return self._rules[symbol.upper()]
        except KeyError:
            raise SymbolRulesError(f"no lot size rules configured for {symbol}") from None


class ExchangeSymbolRules:
    """Lot size rules read from exchange info, cached per symbol and order type."""

    def __init__(self, gateway: ExchangeGateway) -> None:
        self._gateway = gateway
        self._cache: dict[tuple[str, str], SymbolRules] = {}

    async def rules_for(self, symbol: str, order_type: OrderType = "MARKET") -> SymbolRules:
        key = (symbol.upper(), order_type)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            rules = await self._gateway.symbol_rules(key[0], order_type)
        except GatewayError as e:
            raise SymbolRulesError(f"exchange info unavailable: {e.message}") from e
        self._cache[key] = rules
        return rules
