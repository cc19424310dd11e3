"""Pytest configuration and fixtures."""

import pytest
import threading
from copy import deepcopy
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from src.allocation.engine import AllocationEngine
from src.allocation.errors import PersistenceError
from src.allocation.models import (
    AllocationConstraints,
    Signal,
    Strategy,
    StrategyStock,
    WeightMode,
)
from src.market_data.mock import MockPriceSource
from src.persistence.models import NAVHistoryRecord, PortfolioRecord, PositionRecord
from src.persistence.repository import PortfolioRepository, StrategyRepository
from src.portfolio.portfolio_service import PortfolioService


class MockRepository(StrategyRepository, PortfolioRepository):
    """In-memory strategy and portfolio storage."""

    def __init__(self):
        self.strategies: Dict[str, Strategy] = {}
        self.portfolios: Dict[str, PortfolioRecord] = {}
        self.positions: Dict[str, List[PositionRecord]] = {}
        self.nav_history: Dict[str, List[NAVHistoryRecord]] = {}
        self.fail_writes = False
        self.write_calls = 0

    def add_strategy(self, strategy: Strategy) -> Strategy:
        self.strategies[strategy.id] = strategy
        return strategy

    def get_strategies(self, strategy_ids: List[str]) -> List[Strategy]:
        return [deepcopy(s) for s in self.strategies.values() if s.id in strategy_ids]

    def get_strategies_for_user(self, user_id: str) -> List[Strategy]:
        return [deepcopy(s) for s in self.strategies.values() if s.user_id == user_id]

    def get_portfolio(self, portfolio_id: str) -> Optional[PortfolioRecord]:
        portfolio = self.portfolios.get(portfolio_id)
        return deepcopy(portfolio) if portfolio else None

    def get_positions(self, portfolio_id: str) -> List[PositionRecord]:
        return deepcopy(self.positions.get(portfolio_id, []))

    def get_all_portfolio_ids(self) -> List[str]:
        return list(self.portfolios.keys())

    def _check_writable(self):
        self.write_calls += 1
        if self.fail_writes:
            raise PersistenceError("storage unavailable")

    def create_portfolio_with_positions(self, portfolio, positions, nav_entry) -> None:
        self._check_writable()
        self.portfolios[portfolio.id] = deepcopy(portfolio)
        self.positions[portfolio.id] = deepcopy(positions)
        self.nav_history[portfolio.id] = [deepcopy(nav_entry)]

    def replace_positions(self, portfolio, positions, nav_entry) -> None:
        self._check_writable()
        self.portfolios[portfolio.id] = deepcopy(portfolio)
        self.positions[portfolio.id] = deepcopy(positions)
        self.nav_history.setdefault(portfolio.id, []).append(deepcopy(nav_entry))

    def append_nav_history(self, entry: NAVHistoryRecord) -> None:
        self._check_writable()
        self.nav_history.setdefault(entry.portfolio_id, []).append(deepcopy(entry))

    def read_nav_history(self, portfolio_id, start=None, end=None) -> List[NAVHistoryRecord]:
        entries = [
            e for e in self.nav_history.get(portfolio_id, [])
            if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)
        ]
        return sorted(deepcopy(entries), key=lambda e: e.timestamp)

    def delete_portfolio(self, portfolio_id: str) -> None:
        self._check_writable()
        self.portfolios.pop(portfolio_id, None)
        self.positions.pop(portfolio_id, None)
        self.nav_history.pop(portfolio_id, None)


class BlockingRepository(MockRepository):
    """MockRepository that can hold replace_positions open and records read/write order."""

    def __init__(self):
        super().__init__()
        self.events: List[str] = []
        self.hold_replace = False
        self.replace_started = threading.Event()
        self.release_replace = threading.Event()

    def replace_positions(self, portfolio, positions, nav_entry) -> None:
        if self.hold_replace:
            self.replace_started.set()
            self.release_replace.wait(5)
        super().replace_positions(portfolio, positions, nav_entry)
        self.events.append("replace_positions")

    def get_positions(self, portfolio_id: str) -> List[PositionRecord]:
        self.events.append("get_positions")
        return super().get_positions(portfolio_id)


class FakeClock:
    """Deterministic clock that advances one hour per call."""

    def __init__(self, start: datetime = datetime(2024, 1, 2, 10, 0, 0), step: timedelta = timedelta(hours=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


def build_stock(stock_id: str, ticker: Optional[str] = None, eligible: bool = True, signal: Optional[Signal] = Signal.BUY):
    return StrategyStock(stock_id=stock_id, ticker=ticker or stock_id.upper(), name=f"{stock_id} Inc", eligible=eligible, signal=signal)


@pytest.fixture
def make_stock():
    """Build a StrategyStock (Buy and eligible by default)."""
    return build_stock


@pytest.fixture
def make_strategy(repository):
    """Build a strategy and register it in the mock repository."""
    counter = {"n": 0}

    def _make(strategy_id: str, mode: str, weight, stocks=None, user_id: str = "user-1"):
        counter["n"] += 1
        strategy = Strategy(
            id=strategy_id,
            user_id=user_id,
            name=f"Strategy {strategy_id}",
            weight_mode=WeightMode(mode),
            weight_value=Decimal(str(weight)),
            stocks=list(stocks or []),
            created_at=datetime(2024, 1, 1) + timedelta(minutes=counter["n"]),
        )
        return repository.add_strategy(strategy)

    return _make


@pytest.fixture
def repository():
    """Create an in-memory repository."""
    return MockRepository()


@pytest.fixture
def blocking_repository(repository):
    """BlockingRepository sharing strategies with the default repository."""
    blocking = BlockingRepository()
    blocking.strategies = repository.strategies
    return blocking


@pytest.fixture
def price_source():
    """Create a mock price source with no default price for unknown tickers."""
    return MockPriceSource(
        prices={
            "AAPL": "150.50",
            "GOOGL": "2800.75",
            "MSFT": "100.00",
            "NVDA": "50.00",
            "TSLA": "200.00",
            "AMZN": "10.00",
        },
        default_price=None,
    )


@pytest.fixture
def open_constraints():
    """Constraints that never clip or drop."""
    return AllocationConstraints(max_allocation_per_stock=Decimal("100"), min_allocation_amount=Decimal("0"))


@pytest.fixture
def engine(repository, price_source):
    """Create an allocation engine over the mock repository and price source."""
    engine = AllocationEngine(strategy_repository=repository, price_source=price_source, price_timeout_seconds=2.0)
    yield engine
    engine.shutdown()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(engine, repository, clock, open_constraints):
    """Create a portfolio service with open default constraints."""
    return PortfolioService(
        engine=engine,
        portfolio_repository=repository,
        default_constraints=open_constraints,
        clock=clock,
    )
