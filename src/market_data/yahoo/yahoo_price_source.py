"""Yahoo Finance price source backed by yfinance."""

import logging
import threading
import time
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFTickerMissingError

from ..models import Quote
from ..price_source import PriceSource
from ...allocation.errors import PriceServiceError, PriceUnavailableError
from ...allocation.models import ZERO, HUNDRED, to_decimal

logger = logging.getLogger(__name__)

# Enough daily bars to find a previous close across a long weekend
HISTORY_PERIOD = "5d"


def _price(value) -> Optional[Decimal]:
    if value is None or pd.isna(value):
        return None
    return to_decimal(round(float(value), 4))


class YahooPriceSource(PriceSource):
    """Price source that reads the latest daily close from Yahoo Finance."""

    def __init__(self, timeout: float = 10.0, cache_ttl_seconds: float = 60.0):
        """
        Initialize Yahoo price source.

        Args:
            timeout: Per-request timeout in seconds
            cache_ttl_seconds: How long a fetched quote is reused (0 disables caching)
        """
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: Dict[str, Tuple[float, Quote]] = {}
        self._cache_lock = threading.Lock()

    def _cached(self, symbol: str) -> Optional[Quote]:
        if self.cache_ttl_seconds <= 0:
            return None
        with self._cache_lock:
            entry = self._cache.get(symbol)
        if entry and time.monotonic() - entry[0] < self.cache_ttl_seconds:
            return entry[1]
        return None

    def _store(self, symbol: str, quote: Quote) -> None:
        if self.cache_ttl_seconds > 0:
            with self._cache_lock:
                self._cache[symbol] = (time.monotonic(), quote)

    def _quote_from_frame(self, symbol: str, frame: Optional[pd.DataFrame]) -> Optional[Quote]:
        """Build a Quote from daily OHLCV bars, or None when there is no close."""
        if frame is None or frame.empty or "Close" not in frame.columns:
            return None
        bars = frame.dropna(subset=["Close"])
        if bars.empty:
            return None

        last = bars.iloc[-1]
        price = _price(last["Close"])
        previous_close = _price(bars.iloc[-2]["Close"]) if len(bars) > 1 else None
        change = price - previous_close if previous_close is not None else ZERO
        change_percent = change / previous_close * HUNDRED if previous_close else ZERO
        volume = last["Volume"] if "Volume" in bars.columns else None

        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            volume=0 if volume is None or pd.isna(volume) else int(volume),
            high=_price(last["High"]) if "High" in bars.columns else None,
            low=_price(last["Low"]) if "Low" in bars.columns else None,
            previous_close=previous_close,
            timestamp=bars.index[-1].to_pydatetime(),
        )

    def _download(self, symbols: List[str]) -> pd.DataFrame:
        """One batched history download for every symbol."""
        try:
            return yf.download(
                " ".join(symbols),
                period=HISTORY_PERIOD,
                interval="1d",
                auto_adjust=False,
                group_by="ticker",
                progress=False,
                threads=False,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Yahoo batch download failed for {len(symbols)} symbols: {e}")
            raise PriceServiceError(f"Yahoo batch download failed: {e}", {"symbols": symbols})

    @staticmethod
    def _frame_for(data: Optional[pd.DataFrame], symbol: str, single: bool) -> Optional[pd.DataFrame]:
        if data is None or data.empty:
            return None
        if isinstance(data.columns, pd.MultiIndex):
            if symbol in data.columns.get_level_values(0):
                return data[symbol]
            return None
        return data if single else None

    def _confirm_missing(self, symbol: str) -> Optional[Quote]:
        """
        Re-request a symbol the batch returned no bars for.

        yfinance logs per-ticker failures inside download() instead of raising,
        so a missing column may be a dropped connection rather than an unknown
        ticker. Only Yahoo's "no data for this ticker" answer counts as
        unavailable; any other failure fails the whole lookup.
        """
        try:
            history = yf.Ticker(symbol).history(
                period=HISTORY_PERIOD,
                interval="1d",
                auto_adjust=False,
                timeout=self.timeout,
                raise_errors=True,
            )
        except YFTickerMissingError as e:
            logger.warning(f"No Yahoo data for {symbol}: {e}")
            return None
        except Exception as e:
            logger.error(f"Error fetching Yahoo quote for {symbol}: {e}")
            raise PriceServiceError(f"Yahoo request failed for {symbol}: {e}", {"symbol": symbol})
        return self._quote_from_frame(symbol, history)

    def get_quote(self, symbol: str) -> Quote:
        """Get the latest quote for a symbol."""
        quote = self.get_batch_quotes([symbol]).get(symbol)
        if quote is None:
            raise PriceUnavailableError(symbol.upper(), "no data from Yahoo")
        return quote

    def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Get quotes for several symbols with one batched download.

        Symbols Yahoo has no data for are omitted. Any transport or service
        failure raises PriceServiceError for the whole batch, so callers never
        see prices from a half-completed lookup.
        """
        quotes: Dict[str, Quote] = {}
        pending: Dict[str, str] = {}

        for symbol in symbols:
            ticker = symbol.upper()
            cached = self._cached(ticker)
            if cached:
                quotes[symbol] = cached
            else:
                pending[symbol] = ticker

        if pending:
            tickers = list(dict.fromkeys(pending.values()))
            data = self._download(tickers)
            fetched: Dict[str, Quote] = {}
            for ticker in tickers:
                quote = self._quote_from_frame(ticker, self._frame_for(data, ticker, len(tickers) == 1))
                if quote is None:
                    quote = self._confirm_missing(ticker)
                if quote is not None:
                    fetched[ticker] = quote
                    self._store(ticker, quote)
            for symbol, ticker in pending.items():
                if ticker in fetched:
                    quotes[symbol] = fetched[ticker]

        logger.info(f"Fetched {len(quotes)}/{len(symbols)} quotes from Yahoo")
        return quotes
