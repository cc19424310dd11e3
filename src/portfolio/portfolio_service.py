"""Portfolio service: preview, commit, rebalance and NAV tracking."""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from ..allocation.calculator import split_proportionally
from ..allocation.engine import AllocationEngine
from ..allocation.errors import ConstraintViolationError, PortfolioNotFoundError, ValidationError
from ..allocation.models import (
    ZERO,
    AllocationConstraints,
    AllocationRequest,
    AllocationResult,
    StockAllocation,
    round_money,
    to_decimal,
)
from ..persistence.models import (
    EVENT_COMMIT,
    EVENT_REBALANCE,
    EVENT_UPDATE,
    NAVHistoryRecord,
    PersistedSnapshot,
    PortfolioRecord,
    PositionRecord,
    as_utc,
    utc_now,
)
from ..persistence.repository import PortfolioRepository
from ..utils.logging_utils import mask_amount
from .performance import PerformanceMetrics, calculate_drawdown, calculate_performance_metrics

logger = logging.getLogger(__name__)


@dataclass
class PortfolioMeta:
    """Descriptive data for a portfolio being committed."""

    user_id: str
    name: str
    portfolio_id: Optional[str] = None


class PortfolioService:
    """Turns allocation results into persisted portfolios and tracks their NAV."""

    def __init__(
        self,
        engine: AllocationEngine,
        portfolio_repository: PortfolioRepository,
        default_constraints: Optional[AllocationConstraints] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize portfolio service.

        Args:
            engine: Allocation engine (also provides the price source)
            portfolio_repository: Storage for portfolios, positions and NAV history
            default_constraints: Constraints used when a request or portfolio has none
            clock: Source of timestamps (naive values are taken to be UTC)
        """
        self.engine = engine
        self.repository = portfolio_repository
        self.default_constraints = default_constraints or AllocationConstraints()
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _portfolio_lock(self, portfolio_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(portfolio_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[portfolio_id] = lock
            return lock

    def _require_portfolio(self, portfolio_id: str) -> PortfolioRecord:
        portfolio = self.repository.get_portfolio(portfolio_id)
        if portfolio is None:
            logger.error(f"[{portfolio_id}] Portfolio not found")
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio

    def _build_request(
        self,
        strategy_ids: List[str],
        total_investment,
        constraints: Optional[AllocationConstraints],
        excluded_stock_ids: Optional[Iterable[str]] = None,
    ) -> AllocationRequest:
        return AllocationRequest(
            strategy_ids=list(strategy_ids),
            total_investment=to_decimal(total_investment),
            constraints=constraints or self.default_constraints,
            excluded_stock_ids=list(excluded_stock_ids or []),
        )

    def _check_violations(self, result: AllocationResult, allow_violations: bool, context: str) -> None:
        """Fail closed on blocking violations unless the caller opted in."""
        if result.validation.is_valid:
            return
        blocking = [v for v in result.validation.violations if v.is_blocking]
        if allow_violations:
            logger.warning(f"{context}: proceeding with {len(blocking)} constraint violations (override)")
            return
        logger.error(f"{context}: rejected with {len(blocking)} constraint violations")
        raise ConstraintViolationError(f"{context} rejected: allocation violates constraints", blocking)

    @staticmethod
    def _consumed_contributions(allocation: StockAllocation, value: Decimal) -> Dict[str, Decimal]:
        """Scale strategy contributions to the consumed value, in cents, summing exactly to it."""
        strategy_ids = list(allocation.strategy_contrib.keys())
        if not strategy_ids:
            return {}
        parts = split_proportionally(value, list(allocation.strategy_contrib.values()))
        rounded = [round_money(part) for part in parts[:-1]]
        rounded.append(value - sum(rounded, ZERO))
        return dict(zip(strategy_ids, rounded))

    def _positions_from_result(self, portfolio_id: str, result: AllocationResult, now: datetime) -> List[PositionRecord]:
        positions = []
        for allocation in result.allocations:
            value = round_money(allocation.actual_value)
            positions.append(PositionRecord(
                portfolio_id=portfolio_id,
                stock_id=allocation.stock_id,
                ticker=allocation.ticker,
                quantity=allocation.quantity,
                entry_price=allocation.price,
                allocation_value=value,
                strategy_contrib=self._consumed_contributions(allocation, value),
                created_at=now,
            ))
        return positions

    def _next_timestamp(self, history: List[NAVHistoryRecord]) -> datetime:
        """Current time, nudged past the latest entry so the series stays strictly ordered."""
        now = as_utc(self.clock())
        if history and now <= history[-1].timestamp:
            now = history[-1].timestamp + timedelta(microseconds=1)
        return now

    # Preview

    def preview(
        self,
        strategy_ids: List[str],
        total_investment,
        constraints: Optional[AllocationConstraints] = None,
        excluded_stock_ids: Optional[Iterable[str]] = None,
    ) -> AllocationResult:
        """Compute an allocation without persisting anything. Violations are returned as warnings."""
        request = self._build_request(strategy_ids, total_investment, constraints, excluded_stock_ids)
        return self.engine.calculate_allocations(request)

    def preview_with_exclusions(self, request: AllocationRequest, excluded_stock_ids: Iterable[str]) -> AllocationResult:
        """Recompute a preview with additional stocks excluded."""
        return self.engine.recalculate_with_exclusions(request, excluded_stock_ids)

    def suggest_constraint_adjustments(
        self,
        strategy_ids: List[str],
        total_investment,
        constraints: Optional[AllocationConstraints] = None,
    ) -> List[str]:
        strategies = self.engine.load_strategies(strategy_ids)
        return self.engine.validator.suggest_constraint_adjustments(
            strategies, to_decimal(total_investment), constraints or self.default_constraints
        )

    # Commit

    def commit(
        self,
        strategy_ids: List[str],
        total_investment,
        constraints: Optional[AllocationConstraints],
        portfolio_meta: PortfolioMeta,
        allow_violations: bool = False,
    ) -> PersistedSnapshot:
        """
        Compute and persist a new portfolio.

        Args:
            strategy_ids: Strategies to allocate across
            total_investment: Amount to invest
            constraints: Allocation constraints (defaults apply when None)
            portfolio_meta: Owner and name of the new portfolio
            allow_violations: Persist even when validation reports blocking violations

        Returns:
            PersistedSnapshot of what was written

        Raises:
            ValidationError: Malformed request or portfolio ID already in use
            ConstraintViolationError: Violations present and allow_violations is False
            PersistenceError: Storage failed; nothing was written
        """
        request = self._build_request(strategy_ids, total_investment, constraints)
        portfolio_id = portfolio_meta.portfolio_id or str(uuid.uuid4())

        with self._portfolio_lock(portfolio_id):
            if self.repository.get_portfolio(portfolio_id) is not None:
                raise ValidationError(f"Portfolio {portfolio_id} already exists", field="portfolio_id")

            result = self.engine.calculate_allocations(request)
            self._check_violations(result, allow_violations, f"[{portfolio_id}] Commit")

            now = as_utc(self.clock())
            portfolio = PortfolioRecord(
                id=portfolio_id,
                user_id=portfolio_meta.user_id,
                name=portfolio_meta.name,
                total_investment=request.total_investment,
                strategy_ids=list(request.strategy_ids),
                constraints=request.constraints,
                created_at=now,
                updated_at=now,
            )
            positions = self._positions_from_result(portfolio_id, result, now)
            nav_entry = NAVHistoryRecord(
                portfolio_id=portfolio_id,
                timestamp=now,
                nav=request.total_investment,
                pnl=ZERO,
                drawdown=ZERO,
                event=EVENT_COMMIT,
            )
            self.repository.create_portfolio_with_positions(portfolio, positions, nav_entry)

        logger.info(
            f"[{portfolio_id}] Committed portfolio '{portfolio.name}' with {len(positions)} positions "
            f"({mask_amount(result.unallocated_cash)} unallocated)"
        )
        return PersistedSnapshot(portfolio=portfolio, positions=positions, nav_entry=nav_entry, result=result)

    # Rebalance

    def _rebalance_request(self, portfolio: PortfolioRecord, new_total_investment) -> AllocationRequest:
        strategy_ids = list(portfolio.strategy_ids)
        if not strategy_ids:
            for position in self.repository.get_positions(portfolio.id):
                for strategy_id in position.strategy_contrib:
                    if strategy_id not in strategy_ids:
                        strategy_ids.append(strategy_id)
        if not strategy_ids:
            raise ValidationError(
                f"Portfolio {portfolio.id} has no strategies to rebalance against",
                field="strategy_ids",
            )
        return self._build_request(strategy_ids, new_total_investment, portfolio.constraints)

    def rebalance_preview(self, portfolio_id: str, new_total_investment) -> AllocationResult:
        """Recompute the allocation for a portfolio against a new total, without persisting."""
        portfolio = self._require_portfolio(portfolio_id)
        request = self._rebalance_request(portfolio, new_total_investment)
        logger.info(f"[{portfolio_id}] Rebalance preview at {mask_amount(request.total_investment)}")
        return self.engine.calculate_allocations(request)

    def rebalance_commit(self, portfolio_id: str, new_total_investment, allow_violations: bool = False) -> PersistedSnapshot:
        """
        Replace a portfolio's positions with a fresh allocation against a new total.

        Prior NAV history is left untouched; a rebalance entry is appended with
        the new total as its NAV.

        Raises:
            PortfolioNotFoundError: Unknown portfolio
            ConstraintViolationError: Violations present and allow_violations is False
            PersistenceError: Storage failed; nothing was written
        """
        with self._portfolio_lock(portfolio_id):
            portfolio = self._require_portfolio(portfolio_id)
            request = self._rebalance_request(portfolio, new_total_investment)
            result = self.engine.calculate_allocations(request)
            self._check_violations(result, allow_violations, f"[{portfolio_id}] Rebalance")

            history = self.repository.read_nav_history(portfolio_id)
            now = self._next_timestamp(history)
            nav = request.total_investment
            high_water_mark = max([entry.nav for entry in history] + [nav])

            portfolio.total_investment = request.total_investment
            portfolio.strategy_ids = list(request.strategy_ids)
            portfolio.updated_at = now
            positions = self._positions_from_result(portfolio_id, result, now)
            nav_entry = NAVHistoryRecord(
                portfolio_id=portfolio_id,
                timestamp=now,
                nav=nav,
                pnl=ZERO,
                drawdown=calculate_drawdown(nav, high_water_mark),
                event=EVENT_REBALANCE,
            )
            self.repository.replace_positions(portfolio, positions, nav_entry)

        logger.info(f"[{portfolio_id}] Rebalanced to {mask_amount(nav)} with {len(positions)} positions")
        return PersistedSnapshot(portfolio=portfolio, positions=positions, nav_entry=nav_entry, result=result)

    # NAV

    def update_nav(self, portfolio_id: str) -> NAVHistoryRecord:
        """
        Mark a portfolio to market and append one NAV entry.

        Positions without a current price are valued at their entry price.

        Raises:
            PortfolioNotFoundError: Unknown portfolio
            PriceServiceError: Batch price lookup failed
            PersistenceError: Storage failed
        """
        with self._portfolio_lock(portfolio_id):
            portfolio = self._require_portfolio(portfolio_id)
            positions = self.repository.get_positions(portfolio_id)

            if positions:
                tickers = list(dict.fromkeys(p.ticker for p in positions))
                prices = self.engine.fetch_prices(tickers)
                nav = ZERO
                for position in positions:
                    price = prices.get(position.ticker)
                    if price is None or price <= 0:
                        logger.warning(f"[{portfolio_id}] No price for {position.ticker}; using entry price")
                        price = position.entry_price
                    nav += price * position.quantity
            else:
                nav = portfolio.total_investment

            history = self.repository.read_nav_history(portfolio_id)
            high_water_mark = max([entry.nav for entry in history] + [nav])
            entry = NAVHistoryRecord(
                portfolio_id=portfolio_id,
                timestamp=self._next_timestamp(history),
                nav=nav,
                pnl=nav - portfolio.total_investment,
                drawdown=calculate_drawdown(nav, high_water_mark),
                event=EVENT_UPDATE,
            )
            self.repository.append_nav_history(entry)

        logger.info(f"[{portfolio_id}] NAV updated: {mask_amount(nav)} (drawdown {entry.drawdown:.2f}%)")
        return entry

    def get_history(
        self,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[NAVHistoryRecord]:
        self._require_portfolio(portfolio_id)
        return self.repository.read_nav_history(
            portfolio_id,
            as_utc(start) if start is not None else None,
            as_utc(end) if end is not None else None,
        )

    def get_performance(self, portfolio_id: str) -> PerformanceMetrics:
        """Derive performance metrics from the portfolio's NAV history."""
        portfolio = self._require_portfolio(portfolio_id)
        history = self.repository.read_nav_history(portfolio_id)
        return calculate_performance_metrics(history, portfolio.total_investment)

    def delete_portfolio(self, portfolio_id: str) -> None:
        with self._portfolio_lock(portfolio_id):
            self._require_portfolio(portfolio_id)
            self.repository.delete_portfolio(portfolio_id)
        logger.info(f"[{portfolio_id}] Portfolio deleted")
