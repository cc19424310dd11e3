"""In-process price source with fixed quotes."""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ..models import Quote
from ..price_source import PriceSource
from ...allocation.errors import PriceServiceError, PriceUnavailableError
from ...allocation.models import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_QUOTES = {
    "AAPL": "150.25",
    "GOOGL": "2750.80",
    "MSFT": "305.45",
    "TSLA": "245.67",
    "NVDA": "875.30",
}


class MockPriceSource(PriceSource):
    """Price source backed by an in-memory table, used for development and tests."""

    def __init__(self, prices: Optional[Dict[str, object]] = None, default_price: Optional[object] = "100.00"):
        """
        Initialize mock price source.

        Args:
            prices: Symbol to price mapping (defaults to a small built-in table)
            default_price: Price for unknown symbols, or None to treat them as unavailable
        """
        source = DEFAULT_QUOTES if prices is None else prices
        self._prices: Dict[str, Decimal] = {s.upper(): to_decimal(p) for s, p in source.items()}
        self.default_price = to_decimal(default_price) if default_price is not None else None
        self.failing = False
        self.batch_calls = 0
        self._lock = threading.Lock()

    def set_price(self, symbol: str, price: object) -> None:
        with self._lock:
            self._prices[symbol.upper()] = to_decimal(price)

    def remove_price(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(symbol.upper(), None)

    def _lookup(self, symbol: str) -> Optional[Decimal]:
        with self._lock:
            return self._prices.get(symbol.upper(), self.default_price)

    def get_quote(self, symbol: str) -> Quote:
        if self.failing:
            raise PriceServiceError("Mock price source is unavailable")
        price = self._lookup(symbol)
        if price is None:
            raise PriceUnavailableError(symbol)
        return Quote(symbol=symbol.upper(), price=price, previous_close=price, timestamp=datetime.now())

    def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        self.batch_calls += 1
        if self.failing:
            raise PriceServiceError("Mock price source is unavailable", {"symbols": list(symbols)})

        quotes = {}
        for symbol in symbols:
            price = self._lookup(symbol)
            if price is None:
                logger.debug(f"No mock price for {symbol}")
                continue
            quotes[symbol] = Quote(symbol=symbol.upper(), price=price, previous_close=price, timestamp=datetime.now())
        return quotes
