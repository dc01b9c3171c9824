from __future__ import annotations

import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

from bot_talker.engine.executor import ExecutorConfig
from bot_talker.connectivity import DEFAULT_WARN_OFFSET_MS
from bot_talker.types import SymbolRules


class MarketConfig(BaseModel):
    symbol: Optional[str] = None
    asset: str = "USDT"
    price_source: Literal["last", "mark"] = "last"


class OrderConfig(BaseModel):
    side: Literal["BUY", "SELL"] = "BUY"
    order_type: Literal["MARKET", "LIMIT"] = "MARKET"
    allocation_fraction: Decimal = Field(default=Decimal("0.10"), gt=0, le=1)
    leverage: int = Field(default=10, ge=1, le=125)
    limit_price: Optional[Decimal] = Field(default=None, gt=0)


class RiskConfig(BaseModel):
    allow_min_clamp: bool = True
    leverage_failure_policy: Literal["continue", "fail_fast"] = "continue"


class SyncConfig(BaseModel):
    warn_offset_ms: int = Field(default=DEFAULT_WARN_OFFSET_MS, ge=1)


class ExecutionConfig(BaseModel):
    call_timeout_seconds: float = Field(default=10.0, gt=0)


class LotSizeConfig(BaseModel):
    min_quantity: Decimal = Field(default=Decimal("0.001"), gt=0)
    step_size: Decimal = Field(default=Decimal("0.001"), gt=0)


def _default_symbol_rules() -> dict[str, LotSizeConfig]:
    return {"BTCUSDT": LotSizeConfig()}


class RulesConfig(BaseModel):
    source: Literal["static", "exchange"] = "static"
    symbols: dict[str, LotSizeConfig] = Field(default_factory=_default_symbol_rules)

    def static_rules(self) -> dict[str, SymbolRules]:
        return {
            symbol.upper(): SymbolRules(
                symbol=symbol.upper(),
                min_quantity=lot.min_quantity,
                step_size=lot.step_size,
            )
            for symbol, lot in self.symbols.items()
        }


class FuturesOrderConfig(BaseModel):
    market: MarketConfig = Field(default_factory=MarketConfig)
    order: OrderConfig = Field(default_factory=OrderConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)

    def validate_logic(self) -> None:
        if self.order.order_type == "LIMIT" and self.order.limit_price is None:
            raise ValueError("order.limit_price is required when order.order_type = LIMIT")
        if self.order.order_type == "MARKET" and self.order.limit_price is not None:
            raise ValueError("order.limit_price is only valid for LIMIT orders")
        if self.rules.source == "static" and self.market.symbol:
            if self.market.symbol.upper() not in self.rules.static_rules():
                raise ValueError(
                    f"rules.symbols has no entry for market.symbol={self.market.symbol}"
                )

    def executor_config(self, *, symbol: str) -> ExecutorConfig:
        return ExecutorConfig(
            symbol=symbol.strip().upper(),
            asset=self.market.asset.strip().upper(),
            side=self.order.side,
            order_type=self.order.order_type,
            allocation_fraction=self.order.allocation_fraction,
            leverage=self.order.leverage,
            limit_price=self.order.limit_price,
            price_source=self.market.price_source,
            leverage_failure_policy=self.risk.leverage_failure_policy,
            allow_min_clamp=self.risk.allow_min_clamp,
            call_timeout_seconds=self.execution.call_timeout_seconds,
        )


def load_futures_order_config(path: Path) -> FuturesOrderConfig:
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    cfg = FuturesOrderConfig.model_validate(raw)
    cfg.validate_logic()
    return cfg
