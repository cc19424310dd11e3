"""Alpaca price source."""

from .alpaca_price_source import AlpacaPriceSource

__all__ = ["AlpacaPriceSource"]
