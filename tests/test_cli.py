from typer.testing import CliRunner

from bot_talker.cli import app

runner = CliRunner()


def test_size_command_prints_quantity() -> None:
    result = runner.invoke(
        app,
        ["size", "--balance", "1000", "--price", "100000"],
    )
    assert result.exit_code == 0
    assert "'quantity': '0.010'" in result.output
    assert "'clamped': False" in result.output


def test_size_command_reports_clamp() -> None:
    result = runner.invoke(app, ["size", "--balance", "5", "--price", "100000"])
    assert result.exit_code == 0
    assert "'clamped': True" in result.output


def test_size_command_fails_on_zero_balance() -> None:
    result = runner.invoke(app, ["size", "--balance", "0", "--price", "100000"])
    assert result.exit_code == 1
    assert "InsufficientBalance" in result.output


def test_trade_without_credentials_exits_before_any_call(monkeypatch) -> None:
    monkeypatch.setenv("BINANCE_DEMO_API_KEY", "")
    monkeypatch.setenv("BINANCE_DEMO_SECRET", "")
    result = runner.invoke(app, ["trade"])
    assert result.exit_code == 2


def test_size_command_rejects_non_finite_numbers() -> None:
    for value in ("NaN", "Infinity", "-inf"):
        result = runner.invoke(app, ["size", "--balance", value, "--price", "100000"])
        assert result.exit_code == 2
        assert not isinstance(result.exception, ArithmeticError)


def test_trade_rejects_symbol_without_rules_before_touching_exchange(
    monkeypatch, tmp_path
) -> None:
    monkeypatch.setenv("BINANCE_DEMO_API_KEY", "k")
    monkeypatch.setenv("BINANCE_DEMO_SECRET", "s")
    monkeypatch.setenv("BINANCE_ENVIRONMENT", "demo")

    def _no_gateway(*args, **kwargs):
        raise AssertionError("gateway must not be opened")

    monkeypatch.setattr("bot_talker.cli.open_gateway", _no_gateway)
    result = runner.invoke(
        app,
        ["trade", "--config", str(tmp_path / "missing.toml"), "--symbol", "SOLUSDT"],
    )
    assert result.exit_code == 2
    assert "SOLUSDT" in result.output
