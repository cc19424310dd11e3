"""Data models for market quotes."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..allocation.models import ZERO


@dataclass
class Quote:
    """Latest market quote for a symbol."""

    symbol: str
    price: Decimal
    change: Decimal = ZERO
    change_percent: Decimal = ZERO
    volume: int = 0
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    open: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to a serializable dictionary."""
        return {
            "symbol": self.symbol.upper(),
            "price": str(self.price),
            "change": str(self.change),
            "change_percent": str(self.change_percent),
            "volume": self.volume,
            "high": str(self.high) if self.high is not None else None,
            "low": str(self.low) if self.low is not None else None,
            "open": str(self.open) if self.open is not None else None,
            "previous_close": str(self.previous_close) if self.previous_close is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }
