from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional

Side = Literal["BUY", "SELL"]
OrderType = Literal["MARKET", "LIMIT"]
PriceSource = Literal["last", "mark"]
SyncStatus = Literal["ok", "slow", "unreachable"]


@dataclass(frozen=True)
class AccountBalance:
    asset: str
    available: Decimal
    total: Decimal = Decimal("0")


@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    price: Decimal
    time_ms: int = 0
    source: PriceSource = "last"


@dataclass(frozen=True)
class SymbolRules:
    symbol: str
    min_quantity: Decimal
    step_size: Decimal


@dataclass(frozen=True)
class SizingRequest:
    available_balance: Decimal
    allocation_fraction: Decimal
    leverage: int
    price: Decimal
    rules: SymbolRules


@dataclass(frozen=True)
class SizingResult:
    quantity: Decimal
    margin: Decimal
    notional: Decimal
    raw_quantity: Decimal
    # True when the step-floored quantity was raised to the symbol minimum,
    # i.e. the order carries more risk than the requested allocation.
    clamped: bool = False


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    quantity: Decimal
    order_type: OrderType = "MARKET"
    # Only sent for LIMIT orders.
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderOutcome:
    order_id: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.order_id is not None and self.failure_reason is None


@dataclass(frozen=True)
class SyncReport:
    status: SyncStatus
    offset_ms: Optional[int] = None
    server_time_ms: Optional[int] = None
    local_time_ms: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"
