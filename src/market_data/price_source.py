"""Abstract base class for price source implementations."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List

from .models import Quote


class PriceSource(ABC):
    """Abstract base class for price source implementations."""

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """
        Get the latest quote for a symbol.

        Args:
            symbol: Ticker symbol

        Returns:
            Quote for the symbol

        Raises:
            PriceUnavailableError: No price is available for this symbol
            PriceServiceError: The provider could not be reached
        """
        pass

    @abstractmethod
    def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Get quotes for several symbols in one call.

        Args:
            symbols: Ticker symbols

        Returns:
            Dict mapping symbol to Quote. Symbols without a price are omitted.

        Raises:
            PriceServiceError: The batch call failed as a whole
        """
        pass

    def get_current_prices(self, symbols: List[str]) -> Dict[str, Decimal]:
        """
        Get the latest price for each symbol.

        Returns:
            Dict mapping symbol to price; missing entries mean unavailable
        """
        if not symbols:
            return {}
        quotes = self.get_batch_quotes(symbols)
        return {symbol: quote.price for symbol, quote in quotes.items()}
