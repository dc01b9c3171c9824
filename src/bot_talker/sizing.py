"""
Position sizing for leveraged futures orders.

Turns an available balance, an allocation fraction and a leverage multiplier
into a quantity the exchange accepts for the symbol. Pure `Decimal` arithmetic,
no I/O.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_DOWN, Decimal

from bot_talker.errors import (
    InsufficientBalanceError,
    InvalidPriceError,
    InvalidSizingInputError,
    QuantityBelowMinimumError,
)
from bot_talker.types import SizingRequest, SizingResult


def floor_to_step(quantity: Decimal, step: Decimal) -> Decimal:
    if step <= 0:
        return quantity
    steps = (quantity / step).to_integral_value(rounding=ROUND_DOWN)
    return (steps * step).quantize(step)


def ceil_to_step(quantity: Decimal, step: Decimal) -> Decimal:
    if step <= 0:
        return quantity
    steps = (quantity / step).to_integral_value(rounding=ROUND_CEILING)
    return (steps * step).quantize(step)


def _validate(request: SizingRequest) -> None:
    if request.available_balance <= 0:
        raise InsufficientBalanceError(
            f"available balance must be > 0, got {request.available_balance}"
        )
    if request.price <= 0:
        raise InvalidPriceError(f"price must be > 0, got {request.price}")
    if not (0 < request.allocation_fraction <= 1):
        raise InvalidSizingInputError(
            f"allocation_fraction must be within (0, 1], got {request.allocation_fraction}"
        )
    if request.leverage < 1:
        raise InvalidSizingInputError(f"leverage must be >= 1, got {request.leverage}")
    if request.rules.step_size <= 0 or request.rules.min_quantity <= 0:
        raise InvalidSizingInputError(f"invalid lot size rules for {request.rules.symbol}")


def size_position(request: SizingRequest, *, allow_min_clamp: bool = True) -> SizingResult:
    """
    margin = available * fraction, notional = margin * leverage,
    quantity = floor(notional / price) to the step size.

    A quantity below the symbol minimum is raised to the minimum (rounded up to
    the step grid) and flagged as `clamped`; with `allow_min_clamp=False` it is
    an error instead.
    """
    _validate(request)
    rules = request.rules

    margin = request.available_balance * request.allocation_fraction
    notional = margin * Decimal(request.leverage)
    raw_quantity = notional / request.price
    quantity = floor_to_step(raw_quantity, rules.step_size)

    clamped = False
    if quantity < rules.min_quantity:
        if not allow_min_clamp:
            raise QuantityBelowMinimumError(
                f"computed quantity {quantity} is below minimum {rules.min_quantity} "
                f"for {rules.symbol}"
            )
        quantity = ceil_to_step(rules.min_quantity, rules.step_size)
        clamped = True

    return SizingResult(
        quantity=quantity,
        margin=margin,
        notional=notional,
        raw_quantity=raw_quantity,
        clamped=clamped,
    )
