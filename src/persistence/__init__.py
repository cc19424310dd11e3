"""Persistence records and storage boundaries."""

from .models import NAVHistoryRecord, PersistedSnapshot, PortfolioRecord, PositionRecord
from .repository import PortfolioRepository, StrategyRepository

__all__ = [
    "NAVHistoryRecord",
    "PersistedSnapshot",
    "PortfolioRecord",
    "PositionRecord",
    "PortfolioRepository",
    "StrategyRepository",
]
