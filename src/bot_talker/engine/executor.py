from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, TypeVar

from bot_talker.errors import (
    BalanceError,
    BotTalkerError,
    ConfigurationError,
    GatewayError,
    LeverageError,
    OrderError,
    PriceError,
    SymbolRulesError,
    WorkflowCancelledError,
)
from bot_talker.exchange.gateway import ExchangeGateway
from bot_talker.rules import SymbolRulesProvider
from bot_talker.sizing import size_position
from bot_talker.types import (
    AccountBalance,
    OrderOutcome,
    OrderRequest,
    OrderType,
    PriceQuote,
    PriceSource,
    Side,
    SizingRequest,
    SizingResult,
)

logger = logging.getLogger("bot_talker.executor")

T = TypeVar("T")

LeverageFailurePolicy = Literal["continue", "fail_fast"]


class WorkflowState(str, Enum):
    INIT = "init"
    LEVERAGE_SET = "leverage_set"
    BALANCE_FETCHED = "balance_fetched"
    PRICE_FETCHED = "price_fetched"
    SIZED = "sized"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UnexpectedWorkflowError(BotTalkerError):
    code = "Unexpected"


@dataclass(frozen=True)
class ExecutorConfig:
    symbol: str
    asset: str = "USDT"
    side: Side = "BUY"
    order_type: OrderType = "MARKET"
    allocation_fraction: Decimal = Decimal("0.10")
    leverage: int = 10
    limit_price: Optional[Decimal] = None
    price_source: PriceSource = "last"
    leverage_failure_policy: LeverageFailurePolicy = "continue"
    allow_min_clamp: bool = True
    call_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.order_type == "LIMIT" and (self.limit_price is None or self.limit_price <= 0):
            raise ConfigurationError("limit_price > 0 is required for LIMIT orders")
        if self.order_type == "MARKET" and self.limit_price is not None:
            raise ConfigurationError("limit_price is only valid for LIMIT orders")


@dataclass
class WorkflowReport:
    symbol: str
    state: WorkflowState = WorkflowState.INIT
    history: list[WorkflowState] = field(default_factory=lambda: [WorkflowState.INIT])
    leverage_applied: bool = False
    balance: Optional[AccountBalance] = None
    quote: Optional[PriceQuote] = None
    sizing: Optional[SizingResult] = None
    order: Optional[OrderOutcome] = None
    error: Optional[BotTalkerError] = None

    @property
    def ok(self) -> bool:
        return self.state is WorkflowState.SUCCEEDED


class FuturesOrderExecutor:
    """
    One sizing-and-submit pass for a single symbol:
    set leverage, fetch balance, fetch price, size, place the order.

    Every remote call runs at most once under `call_timeout_seconds`. The run
    stops at the first fatal step; `run` never raises, the outcome is in the
    returned `WorkflowReport`.
    """

    def __init__(
        self,
        *,
        gateway: ExchangeGateway,
        config: ExecutorConfig,
        rules: SymbolRulesProvider,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._rules = rules

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def run(self, *, cancel: asyncio.Event | None = None) -> WorkflowReport:
        report = WorkflowReport(symbol=self._config.symbol)
        try:
            await self._set_leverage(report, cancel)
            balance = await self._fetch_balance(report, cancel)
            quote = await self._fetch_price(report, cancel)
            sizing = await self._size(report, cancel, balance=balance, quote=quote)
            await self._submit(report, cancel, sizing=sizing)
        except BotTalkerError as e:
            return self._fail(report, e)
        except Exception as e:
            logger.exception(
                "workflow_crashed",
                extra={"symbol": report.symbol, "state": report.state.value},
            )
            return self._fail(report, UnexpectedWorkflowError(f"{type(e).__name__}: {e}"))

        self._advance(report, WorkflowState.SUCCEEDED)
        return report

    async def _set_leverage(self, report: WorkflowReport, cancel: asyncio.Event | None) -> None:
        cfg = self._config
        self._check_cancel(report, cancel)
        try:
            applied = await self._remote(self._gateway.set_leverage(cfg.symbol, cfg.leverage))
        except GatewayError as e:
            if cfg.leverage_failure_policy == "fail_fast":
                raise LeverageError(f"set leverage failed: {e.message}") from e
            # Leverage may already be at the requested value on the account.
            logger.error(
                "leverage_set_failed",
                extra={"symbol": cfg.symbol, "leverage": cfg.leverage, "reason": e.message},
            )
        else:
            report.leverage_applied = True
            logger.info("leverage_set", extra={"symbol": cfg.symbol, "leverage": applied})
        self._advance(report, WorkflowState.LEVERAGE_SET)

    async def _fetch_balance(
        self,
        report: WorkflowReport,
        cancel: asyncio.Event | None,
    ) -> AccountBalance:
        cfg = self._config
        self._check_cancel(report, cancel)
        try:
            balances = await self._remote(self._gateway.balances())
        except GatewayError as e:
            raise BalanceError(f"balance fetch failed: {e.message}") from e

        balance = next((b for b in balances if b.asset.upper() == cfg.asset.upper()), None)
        if balance is None:
            raise BalanceError(f"no {cfg.asset} balance in account")
        report.balance = balance
        logger.info(
            "balance_fetched",
            extra={
                "symbol": cfg.symbol,
                "asset": balance.asset,
                "available": str(balance.available),
            },
        )
        self._advance(report, WorkflowState.BALANCE_FETCHED)
        return balance

    async def _fetch_price(
        self,
        report: WorkflowReport,
        cancel: asyncio.Event | None,
    ) -> PriceQuote:
        cfg = self._config
        self._check_cancel(report, cancel)
        try:
            quote = await self._remote(self._gateway.price(cfg.symbol, cfg.price_source))
        except GatewayError as e:
            raise PriceError(f"price unavailable: {e.message}") from e
        report.quote = quote
        logger.info("price_fetched", extra={"symbol": cfg.symbol, "price": str(quote.price)})
        self._advance(report, WorkflowState.PRICE_FETCHED)
        return quote

    async def _size(
        self,
        report: WorkflowReport,
        cancel: asyncio.Event | None,
        *,
        balance: AccountBalance,
        quote: PriceQuote,
    ) -> SizingResult:
        cfg = self._config
        self._check_cancel(report, cancel)
        try:
            rules = await self._remote(self._rules.rules_for(cfg.symbol, cfg.order_type))
        except GatewayError as e:
            raise SymbolRulesError(f"lot size rules unavailable: {e.message}") from e

        # Limit orders are sized at their own price.
        price = cfg.limit_price if cfg.order_type == "LIMIT" and cfg.limit_price else quote.price
        sizing = size_position(
            SizingRequest(
                available_balance=balance.available,
                allocation_fraction=cfg.allocation_fraction,
                leverage=cfg.leverage,
                price=price,
                rules=rules,
            ),
            allow_min_clamp=cfg.allow_min_clamp,
        )
        report.sizing = sizing
        if sizing.clamped:
            logger.warning(
                "quantity_clamped_to_minimum",
                extra={
                    "symbol": cfg.symbol,
                    "qty": str(sizing.quantity),
                    "reason": f"raw quantity {sizing.raw_quantity} below step/minimum",
                },
            )
        logger.info(
            "order_sized",
            extra={
                "symbol": cfg.symbol,
                "qty": str(sizing.quantity),
                "clamped": sizing.clamped,
                "leverage": cfg.leverage,
            },
        )
        self._advance(report, WorkflowState.SIZED)
        return sizing

    async def _submit(
        self,
        report: WorkflowReport,
        cancel: asyncio.Event | None,
        *,
        sizing: SizingResult,
    ) -> None:
        cfg = self._config
        self._check_cancel(report, cancel)
        order = OrderRequest(
            symbol=cfg.symbol,
            side=cfg.side,
            quantity=sizing.quantity,
            order_type=cfg.order_type,
            price=cfg.limit_price if cfg.order_type == "LIMIT" else None,
        )
        self._advance(report, WorkflowState.SUBMITTED)
        try:
            order_id = await self._remote(self._gateway.place_order(order))
        except GatewayError as e:
            report.order = OrderOutcome(failure_reason=e.message)
            raise OrderError(e.message) from e
        report.order = OrderOutcome(order_id=order_id)
        logger.info(
            "order_placed",
            extra={"symbol": cfg.symbol, "order_id": order_id, "qty": str(order.quantity)},
        )

    async def _remote(self, call: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._config.call_timeout_seconds):
                return await call
        except TimeoutError as e:
            raise GatewayError(
                f"timed out after {self._config.call_timeout_seconds}s"
            ) from e

    def _check_cancel(self, report: WorkflowReport, cancel: asyncio.Event | None) -> None:
        if cancel is None or not cancel.is_set():
            return
        if report.leverage_applied:
            logger.warning(
                "cancelled_with_leverage_set",
                extra={
                    "symbol": report.symbol,
                    "leverage": self._config.leverage,
                    "reason": "leverage was changed but no order was placed",
                },
            )
        raise WorkflowCancelledError(f"cancelled before {_next_step(report.state)}")

    def _advance(self, report: WorkflowReport, state: WorkflowState) -> None:
        report.state = state
        report.history.append(state)

    def _fail(self, report: WorkflowReport, error: BotTalkerError) -> WorkflowReport:
        report.error = error
        logger.error(
            "workflow_failed",
            extra={
                "symbol": report.symbol,
                "state": report.state.value,
                "code": error.code,
                "reason": error.message,
            },
        )
        self._advance(report, WorkflowState.FAILED)
        return report


_ORDER = list(WorkflowState)


def _next_step(state: WorkflowState) -> str:
    index = _ORDER.index(state)
    return _ORDER[index + 1].value


async def run_concurrently(
    executors: Sequence[FuturesOrderExecutor],
    *,
    cancel: asyncio.Event | None = None,
) -> list[WorkflowReport]:
    """
    Independent runs (one per symbol) sharing a gateway; results keep input order.
    """
    return list(await asyncio.gather(*(e.run(cancel=cancel) for e in executors)))
