"""Mock price source."""

from .mock_price_source import MockPriceSource, DEFAULT_QUOTES

__all__ = ["MockPriceSource", "DEFAULT_QUOTES"]
