from decimal import Decimal
from pathlib import Path

import pytest

from bot_talker.config.futures_order import FuturesOrderConfig, load_futures_order_config


def test_load_futures_order_config(tmp_path: Path) -> None:
    p = tmp_path / "futures_order.toml"
    p.write_text(
        """
[market]
symbol = "ETHUSDT"
price_source = "mark"

[order]
allocation_fraction = "0.25"
leverage = 5

[risk]
leverage_failure_policy = "fail_fast"

[rules.symbols.ETHUSDT]
min_quantity = "0.01"
step_size = "0.01"
""",
        encoding="utf-8",
    )
    cfg = load_futures_order_config(p)
    executor_cfg = cfg.executor_config(symbol="ethusdt")

    assert executor_cfg.symbol == "ETHUSDT"
    assert executor_cfg.allocation_fraction == Decimal("0.25")
    assert executor_cfg.leverage == 5
    assert executor_cfg.price_source == "mark"
    assert executor_cfg.leverage_failure_policy == "fail_fast"
    assert cfg.rules.static_rules()["ETHUSDT"].step_size == Decimal("0.01")


def test_defaults_match_btc_demo_run() -> None:
    cfg = FuturesOrderConfig()
    cfg.validate_logic()
    executor_cfg = cfg.executor_config(symbol="BTCUSDT")

    assert executor_cfg.allocation_fraction == Decimal("0.10")
    assert executor_cfg.leverage == 10
    assert executor_cfg.leverage_failure_policy == "continue"
    assert cfg.sync.warn_offset_ms == 50
    assert cfg.rules.static_rules()["BTCUSDT"].min_quantity == Decimal("0.001")


@pytest.mark.parametrize(
    "body",
    [
        '[order]\nallocation_fraction = "1.5"\n',
        "[order]\nleverage = 0\n",
        '[order]\norder_type = "LIMIT"\n',
        '[market]\nsymbol = "SOLUSDT"\n',
    ],
)
def test_invalid_configs_are_rejected(tmp_path: Path, body: str) -> None:
    p = tmp_path / "bad.toml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError):
        load_futures_order_config(p)


def test_shipped_config_loads() -> None:
    path = Path(__file__).resolve().parents[1] / "configs" / "futures_order.toml"
    cfg = load_futures_order_config(path)
    assert cfg.market.symbol == "BTCUSDT"
