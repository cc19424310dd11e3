"""Abstract storage boundaries used by the allocation engine and portfolio service."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..allocation.models import Strategy
from .models import NAVHistoryRecord, PortfolioRecord, PositionRecord


class StrategyRepository(ABC):
    """Read access to strategies with nested stock eligibility and latest signals."""

    @abstractmethod
    def get_strategies(self, strategy_ids: List[str]) -> List[Strategy]:
        """
        Get strategies by ID.

        Returns:
            Strategies that exist, in creation order. Unknown IDs are omitted.
        """
        pass

    @abstractmethod
    def get_strategies_for_user(self, user_id: str) -> List[Strategy]:
        """Get all strategies owned by a user, in creation order."""
        pass


class PortfolioRepository(ABC):
    """Storage for portfolios, positions and NAV history."""

    @abstractmethod
    def get_portfolio(self, portfolio_id: str) -> Optional[PortfolioRecord]:
        pass

    @abstractmethod
    def get_positions(self, portfolio_id: str) -> List[PositionRecord]:
        pass

    @abstractmethod
    def get_all_portfolio_ids(self) -> List[str]:
        pass

    @abstractmethod
    def create_portfolio_with_positions(
        self,
        portfolio: PortfolioRecord,
        positions: List[PositionRecord],
        nav_entry: NAVHistoryRecord,
    ) -> None:
        """
        Write a portfolio, its positions and its first NAV entry atomically.

        Raises:
            PersistenceError: Nothing was written
        """
        pass

    @abstractmethod
    def replace_positions(
        self,
        portfolio: PortfolioRecord,
        positions: List[PositionRecord],
        nav_entry: NAVHistoryRecord,
    ) -> None:
        """
        Replace all positions, update the portfolio and append a NAV entry atomically.

        Raises:
            PersistenceError: Nothing was written
        """
        pass

    @abstractmethod
    def append_nav_history(self, entry: NAVHistoryRecord) -> None:
        pass

    @abstractmethod
    def read_nav_history(
        self,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[NAVHistoryRecord]:
        """Get NAV entries ordered by timestamp ascending, optionally bounded (inclusive)."""
        pass

    @abstractmethod
    def delete_portfolio(self, portfolio_id: str) -> None:
        """Delete a portfolio with its positions and NAV history."""
        pass
