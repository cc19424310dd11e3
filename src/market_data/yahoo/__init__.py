"""Yahoo Finance price source."""

from .yahoo_price_source import YahooPriceSource

__all__ = ["YahooPriceSource"]
