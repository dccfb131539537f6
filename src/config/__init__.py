"""Configuration loading for the stockflow pipeline.

Configuration is loaded from a single ``config/config.yaml`` file with
``${VAR}`` environment expansion. ``ALPHAVANTAGE_API_KEY`` in the
environment takes priority over the file.

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> config.topic
    'trades'
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    StockFlowConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "StockFlowConfig",
    "get_config",
    "load_config",
    "reset_config",
    "set_config",
]
