"""Market data price sources."""

import logging
from typing import Optional

from .models import Quote
from .price_source import PriceSource
from .mock import MockPriceSource
from ..config import get_config
from ..config.config import MarketDataConfig

logger = logging.getLogger(__name__)


def create_price_source(config: Optional[MarketDataConfig] = None) -> PriceSource:
    """
    Create a price source for the configured provider.

    Args:
        config: Market data configuration (defaults to the global config)

    Returns:
        PriceSource instance
    """
    if config is None:
        config = get_config().market_data

    provider = config.provider
    if provider == "mock":
        return MockPriceSource()
    elif provider == "yahoo":
        from .yahoo import YahooPriceSource
        return YahooPriceSource(
            timeout=config.request_timeout,
            cache_ttl_seconds=config.cache_ttl_seconds,
        )
    elif provider == "alpaca":
        config.validate_provider_credentials()
        from .alpaca import AlpacaPriceSource
        return AlpacaPriceSource(api_key=config.alpaca_api_key, api_secret=config.alpaca_api_secret)
    else:
        raise ValueError(f"Unknown price provider: {provider}")


__all__ = ["Quote", "PriceSource", "MockPriceSource", "create_price_source"]
