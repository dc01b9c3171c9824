__all__ = [
    "FuturesOrderConfig",
    "load_futures_order_config",
]

from bot_talker.config.futures_order import FuturesOrderConfig, load_futures_order_config
