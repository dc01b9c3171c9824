from __future__ import annotations


class BotTalkerError(Exception):
    code = "Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(BotTalkerError):
    code = "InvalidConfiguration"


class GatewayError(BotTalkerError):
    """Remote call failed; `message` is safe to show to an operator."""

    code = "GatewayFailure"


class ConnectivityError(BotTalkerError):
    code = "Unreachable"


class LeverageError(BotTalkerError):
    code = "LeverageNotSet"


class BalanceError(BotTalkerError):
    code = "NoBalanceData"


class PriceError(BotTalkerError):
    code = "PriceUnavailable"


class SymbolRulesError(BotTalkerError):
    code = "SymbolRulesUnavailable"


class SizingError(BotTalkerError):
    code = "SizingFailed"


class InsufficientBalanceError(SizingError, BalanceError):
    code = "InsufficientBalance"


class InvalidPriceError(SizingError, PriceError):
    code = "InvalidPrice"


class InvalidSizingInputError(SizingError):
    code = "InvalidSizingInput"


class QuantityBelowMinimumError(SizingError):
    code = "QuantityBelowMinimum"


class OrderError(BotTalkerError):
    code = "OrderRejected"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class WorkflowCancelledError(BotTalkerError):
    code = "Cancelled"
