from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bot_talker.errors import ConfigurationError

Environment = Literal["demo", "testnet", "live"]

BASE_URLS: dict[str, str] = {
    "demo": "https://demo-fapi.binance.com",
    "testnet": "https://testnet.binancefuture.com",
    "live": "https://fapi.binance.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Binance (USD-M futures)
    binance_api_key: str = Field(default="", validation_alias="BINANCE_DEMO_API_KEY")
    binance_api_secret: str = Field(default="", validation_alias="BINANCE_DEMO_SECRET")
    binance_environment: Environment = Field(default="demo", validation_alias="BINANCE_ENVIRONMENT")
    binance_base_url: str = Field(default="", validation_alias="BINANCE_BASE_URL")
    confirm_live_trading: str = Field(default="", validation_alias="CONFIRM_LIVE_TRADING")

    # Transport
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="REQUEST_TIMEOUT_SECONDS",
    )
    recv_window_ms: int = Field(default=5_000, ge=1, validation_alias="RECV_WINDOW_MS")
    max_retries: int = Field(default=3, ge=0, validation_alias="MAX_RETRIES")

    # Bot
    symbol: str = Field(default="BTCUSDT", validation_alias="SYMBOL")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    def live_trading_enabled(self) -> bool:
        return (
            self.binance_environment == "live"
            and self.confirm_live_trading.strip().upper() == "YES"
        )

    def base_url(self) -> str:
        if self.binance_base_url.strip():
            return self.binance_base_url.strip()
        return BASE_URLS[self.binance_environment]

    def require_credentials(self) -> None:
        """
        Fail at startup when the key pair is missing or live trading is not confirmed.
        """
        if not self.binance_api_key.strip() or not self.binance_api_secret.strip():
            raise ConfigurationError(
                "BINANCE_DEMO_API_KEY and BINANCE_DEMO_SECRET must be set"
            )
        if self.binance_environment == "live" and not self.live_trading_enabled():
            raise ConfigurationError(
                "BINANCE_ENVIRONMENT=live requires CONFIRM_LIVE_TRADING=YES"
            )
