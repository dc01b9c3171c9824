from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer

from bot_talker.config.futures_order import FuturesOrderConfig, load_futures_order_config
from bot_talker.engine.executor import FuturesOrderExecutor, WorkflowReport, run_concurrently
from bot_talker.errors import ConfigurationError, ConnectivityError, SizingError
from bot_talker.exchange import open_gateway
from bot_talker.exchange.gateway import ExchangeGateway
from bot_talker.logging_utils import configure_logging
from bot_talker.connectivity import ConnectivityChecker, raise_for_status
from bot_talker.rules import ExchangeSymbolRules, StaticSymbolRules, SymbolRulesProvider
from bot_talker.settings import Settings
from bot_talker.sizing import size_position
from bot_talker.types import SizingRequest, SymbolRules

app = typer.Typer(no_args_is_help=True, add_completion=False)
logger = logging.getLogger("bot_talker")

_DEFAULT_CONFIG = Path("configs/futures_order.toml")


def _load_settings(*, require_credentials: bool) -> Settings:
    settings = Settings()
    configure_logging(settings.log_level)
    if require_credentials:
        try:
            settings.require_credentials()
        except ConfigurationError as e:
            logger.error("startup_failed", extra={"code": e.code, "reason": e.message})
            typer.echo(f"error: {e.message}", err=True)
            raise typer.Exit(code=2) from e
    return settings


def _load_run_config(path: Path) -> FuturesOrderConfig:
    if not path.exists():
        # Defaults cover the BTCUSDT demo run.
        cfg = FuturesOrderConfig()
        cfg.validate_logic()
        return cfg
    try:
        return load_futures_order_config(path)
    except Exception as e:
        raise typer.BadParameter(f"invalid config: {e}") from e


def _parse_decimal(value: str, *, option_name: str) -> Decimal:
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation as e:
        raise typer.BadParameter(f"{option_name} expects a decimal number") from e
    if not parsed.is_finite():
        raise typer.BadParameter(f"{option_name} must be a finite number")
    return parsed


def _rules_provider(cfg: FuturesOrderConfig, gateway: ExchangeGateway) -> SymbolRulesProvider:
    if cfg.rules.source == "exchange":
        return ExchangeSymbolRules(gateway)
    return StaticSymbolRules(cfg.rules.static_rules())


def _report_summary(report: WorkflowReport) -> dict[str, object]:
    summary: dict[str, object] = {
        "ok": report.ok,
        "symbol": report.symbol,
        "state": report.state.value,
        "history": [s.value for s in report.history],
        "leverage_applied": report.leverage_applied,
    }
    if report.sizing is not None:
        summary["quantity"] = str(report.sizing.quantity)
        summary["clamped"] = report.sizing.clamped
    if report.order is not None and report.order.order_id is not None:
        summary["order_id"] = report.order.order_id
    if report.error is not None:
        summary["error"] = {"code": report.error.code, "reason": report.error.message}
    return summary


@app.command()
def config_init(
    path: Path = typer.Option(Path(".env"), help="Path to write a starter .env file."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite if exists."),
) -> None:
    """
    Create a starter `.env` file (copy from `.env.example`).
    """
    example_path = Path(".env.example")
    if not example_path.exists():
        raise typer.Exit(code=2)

    if path.exists() and not overwrite:
        raise typer.Exit(code=1)

    path.write_text(example_path.read_text(encoding="utf-8"), encoding="utf-8")
    typer.echo(f"Wrote {path}")


@app.command()
def show_config() -> None:
    settings = _load_settings(require_credentials=False)
    redacted = settings.model_dump()
    redacted["binance_api_key"] = "***" if redacted["binance_api_key"] else ""
    redacted["binance_api_secret"] = "***" if redacted["binance_api_secret"] else ""
    redacted["base_url"] = settings.base_url()
    logger.info("loaded_config", extra={"symbol": settings.symbol})
    typer.echo(redacted)


@app.command()
def health(
    config: Path = typer.Option(_DEFAULT_CONFIG, help="Run config file (TOML)."),
    strict: bool = typer.Option(False, "--strict", help="Exit 1 unless the clock is in sync."),
) -> None:
    """
    Query exchange server time and report the local clock offset.
    """
    settings = _load_settings(require_credentials=False)
    cfg = _load_run_config(config)

    async def _run() -> None:
        async with open_gateway(settings) as gateway:
            checker = ConnectivityChecker(
                gateway=gateway,
                warn_offset_ms=cfg.sync.warn_offset_ms,
                timeout_seconds=cfg.execution.call_timeout_seconds,
            )
            report = await checker.check_sync()
        typer.echo(
            {
                "ok": report.ok,
                "status": report.status,
                "offset_ms": report.offset_ms,
                "server_time_ms": report.server_time_ms,
                "error": report.error,
            }
        )
        if strict:
            try:
                raise_for_status(report)
            except ConnectivityError as e:
                raise typer.Exit(code=1) from e

    asyncio.run(_run())


@app.command()
def size(
    balance: str = typer.Option(..., help="Available margin balance (quote asset)."),
    price: str = typer.Option(..., help="Current price of the symbol."),
    allocation: str = typer.Option("0.10", help="Fraction of balance used as margin, (0, 1]."),
    leverage: int = typer.Option(10, help="Leverage multiplier."),
    min_quantity: str = typer.Option("0.001", help="Symbol minimum order quantity."),
    step_size: str = typer.Option("0.001", help="Symbol quantity step size."),
    symbol: str = typer.Option("BTCUSDT", help="Symbol label for the rules."),
) -> None:
    """
    Offline sizing calculator; no exchange calls.
    """
    request = SizingRequest(
        available_balance=_parse_decimal(balance, option_name="--balance"),
        allocation_fraction=_parse_decimal(allocation, option_name="--allocation"),
        leverage=leverage,
        price=_parse_decimal(price, option_name="--price"),
        rules=SymbolRules(
            symbol=symbol.upper(),
            min_quantity=_parse_decimal(min_quantity, option_name="--min-quantity"),
            step_size=_parse_decimal(step_size, option_name="--step-size"),
        ),
    )
    try:
        result = size_position(request)
    except SizingError as e:
        typer.echo({"ok": False, "code": e.code, "reason": e.message})
        raise typer.Exit(code=1) from e
    typer.echo(
        {
            "ok": True,
            "margin": str(result.margin),
            "notional": str(result.notional),
            "raw_quantity": str(result.raw_quantity),
            "quantity": str(result.quantity),
            "clamped": result.clamped,
        }
    )


@app.command()
def trade(
    config: Path = typer.Option(_DEFAULT_CONFIG, help="Run config file (TOML)."),
    symbol: Optional[list[str]] = typer.Option(
        None,
        "--symbol",
        help="Symbol to trade; repeat to run several symbols concurrently.",
    ),
) -> None:
    """
    Check clock sync, then size and submit one leveraged futures order per symbol.
    """
    started = time.monotonic()
    settings = _load_settings(require_credentials=True)
    cfg = _load_run_config(config)

    symbols = [s.strip().upper() for s in (symbol or []) if s.strip()]
    if not symbols:
        symbols = [(cfg.market.symbol or settings.symbol).strip().upper()]
    if cfg.rules.source == "static":
        known = cfg.rules.static_rules()
        missing = [s for s in symbols if s not in known]
        if missing:
            # Leverage would be changed for a symbol that can never be sized.
            raise typer.BadParameter(
                f"no lot size rules configured for: {', '.join(missing)}",
                param_hint="--symbol",
            )

    async def _run() -> list[WorkflowReport]:
        async with open_gateway(settings) as gateway:
            checker = ConnectivityChecker(
                gateway=gateway,
                warn_offset_ms=cfg.sync.warn_offset_ms,
                timeout_seconds=cfg.execution.call_timeout_seconds,
            )
            await checker.check_sync()

            rules = _rules_provider(cfg, gateway)
            executors = [
                FuturesOrderExecutor(
                    gateway=gateway,
                    config=cfg.executor_config(symbol=s),
                    rules=rules,
                )
                for s in symbols
            ]
            return await run_concurrently(executors)

    reports = asyncio.run(_run())
    for report in reports:
        typer.echo(_report_summary(report))

    logger.info(
        "session_complete",
        extra={"elapsed_ms": int((time.monotonic() - started) * 1000)},
    )
    if not all(r.ok for r in reports):
        raise typer.Exit(code=1)


def main() -> None:
    app()
