"""Alpaca market data price source."""

import logging
from typing import Dict, List

from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockLatestTradeRequest

from ..models import Quote
from ..price_source import PriceSource
from ...allocation.errors import PriceServiceError, PriceUnavailableError
from ...allocation.models import to_decimal

logger = logging.getLogger(__name__)


class AlpacaPriceSource(PriceSource):
    """Price source that uses the latest trade from Alpaca's market data API."""

    def __init__(self, api_key: str, api_secret: str):
        """
        Initialize Alpaca price source.

        Args:
            api_key: Alpaca API key
            api_secret: Alpaca API secret
        """
        self.client = StockHistoricalDataClient(api_key=api_key, secret_key=api_secret)
        logger.info("Initialized Alpaca price source")

    def _to_quote(self, symbol: str, trade) -> Quote:
        return Quote(
            symbol=symbol.upper(),
            price=to_decimal(trade.price),
            volume=int(trade.size or 0),
            timestamp=trade.timestamp,
        )

    def get_quote(self, symbol: str) -> Quote:
        """Get the latest trade price for a symbol."""
        quotes = self.get_batch_quotes([symbol])
        if symbol not in quotes:
            raise PriceUnavailableError(symbol)
        return quotes[symbol]

    def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """Get latest trade prices for several symbols in one request."""
        if not symbols:
            return {}
        try:
            request = StockLatestTradeRequest(symbol_or_symbols=[s.upper() for s in symbols])
            trades = self.client.get_stock_latest_trade(request)
        except Exception as e:
            logger.error(f"Error getting latest trades from Alpaca: {e}")
            raise PriceServiceError(f"Alpaca latest trade request failed: {e}", {"symbols": list(symbols)})

        quotes = {}
        for symbol in symbols:
            trade = trades.get(symbol.upper())
            if trade is None or not trade.price or trade.price <= 0:
                logger.warning(f"No Alpaca trade price for {symbol}")
                continue
            quotes[symbol] = self._to_quote(symbol, trade)

        logger.info(f"Retrieved {len(quotes)}/{len(symbols)} prices from Alpaca")
        return quotes
