"""Allocation engine: orchestrates calculation, constraint correction and pricing."""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .calculator import AllocationCalculator, CalculationOutput, split_proportionally
from .constraint_validator import BLOCKING_CONFIG_VIOLATIONS, ConstraintValidator
from .errors import PriceServiceError, ValidationError
from .models import (
    BELOW_MINIMUM,
    HUNDRED,
    MAX_ALLOCATION_EXCESS,
    NO_CANDIDATES,
    PRICE_UNAVAILABLE,
    ROUNDING,
    UNASSIGNED,
    AllocationConstraints,
    AllocationRequest,
    AllocationResult,
    DroppedStock,
    StockAllocation,
    Strategy,
    ValidationResult,
)
from ..market_data.price_source import PriceSource
from ..persistence.repository import StrategyRepository
from ..utils.logging_utils import mask_amount

logger = logging.getLogger(__name__)

# Drop reasons
DROP_BELOW_MINIMUM = "below_minimum"
DROP_PRICE_UNAVAILABLE = "price_unavailable"
DROP_ZERO_QUANTITY = "zero_quantity"


class AllocationEngine:
    """Entry point for computing a constraint-satisfying, priced allocation."""

    def __init__(
        self,
        strategy_repository: StrategyRepository,
        price_source: PriceSource,
        validator: Optional[ConstraintValidator] = None,
        calculator: Optional[AllocationCalculator] = None,
        price_timeout_seconds: float = 10.0,
        price_workers: int = 4,
    ):
        """
        Initialize allocation engine.

        Args:
            strategy_repository: Source of strategies with stock eligibility and signals
            price_source: Batch price lookup
            validator: Constraint validator (a default one is created if omitted)
            calculator: Allocation calculator (a default one is created if omitted)
            price_timeout_seconds: Upper bound for the batch price lookup
            price_workers: Threads available to price lookups. A lookup that times
                out keeps its thread until the provider returns, so this bounds
                how many hung provider calls can be absorbed before every later
                lookup also queues into a timeout.
        """
        self.strategy_repository = strategy_repository
        self.price_source = price_source
        self.validator = validator or ConstraintValidator()
        self.calculator = calculator or AllocationCalculator()
        self.price_timeout_seconds = price_timeout_seconds
        self.price_workers = price_workers
        self._price_executor = ThreadPoolExecutor(max_workers=price_workers, thread_name_prefix="price-lookup")
        self._hung_lookups = 0
        self._hung_lock = threading.Lock()

    def validate_request(self, request: AllocationRequest) -> ValidationResult:
        """
        Validate request shape and constraint configuration.

        Raises:
            ValidationError: Request cannot be processed

        Returns:
            Non-blocking configuration findings
        """
        if not request.strategy_ids:
            raise ValidationError("At least one strategy ID is required", field="strategy_ids")
        if request.total_investment <= 0:
            raise ValidationError("Total investment must be greater than zero", field="total_investment")

        config_result = self.validator.validate_constraints_config(request.constraints, request.total_investment)
        for violation in config_result.violations:
            if violation.type in BLOCKING_CONFIG_VIOLATIONS:
                raise ValidationError(
                    violation.message,
                    field="constraints",
                    details={"violation": violation.to_dict()},
                )
        return config_result

    def validate_constraints_config(self, constraints: AllocationConstraints, total_investment: Decimal) -> ValidationResult:
        return self.validator.validate_constraints_config(constraints, total_investment)

    def validate_constraints_detailed(
        self,
        allocations: List[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> ValidationResult:
        return self.validator.validate_allocations(allocations, constraints, total_investment)

    def load_strategies(self, strategy_ids: List[str]) -> List[Strategy]:
        """Load strategies in creation order, failing on unknown IDs."""
        unique_ids = list(dict.fromkeys(strategy_ids))
        strategies = self.strategy_repository.get_strategies(unique_ids)
        found = {s.id for s in strategies}
        missing = [sid for sid in unique_ids if sid not in found]
        if missing:
            raise ValidationError(
                f"Unknown strategy IDs: {', '.join(missing)}",
                field="strategy_ids",
                details={"missing": missing},
            )
        if all(s.created_at is not None for s in strategies):
            strategies = sorted(strategies, key=lambda s: s.created_at)
        return strategies

    def calculate_allocations(self, request: AllocationRequest) -> AllocationResult:
        """
        Compute the allocation for a request.

        Args:
            request: Strategies, total investment, constraints and exclusions

        Returns:
            AllocationResult with corrected, priced allocations

        Raises:
            ValidationError: Malformed request
            PriceServiceError: Batch price lookup failed
        """
        config_result = self.validate_request(request)
        strategies = self.load_strategies(request.strategy_ids)
        return self.allocate(strategies, request, config_result)

    def recalculate_with_exclusions(self, request: AllocationRequest, excluded_stock_ids: Iterable[str]) -> AllocationResult:
        """Recompute with additional stocks removed from every candidate set."""
        merged = list(dict.fromkeys(list(request.excluded_stock_ids) + list(excluded_stock_ids)))
        return self.calculate_allocations(AllocationRequest(
            strategy_ids=list(request.strategy_ids),
            total_investment=request.total_investment,
            constraints=request.constraints,
            excluded_stock_ids=merged,
        ))

    def allocate(
        self,
        strategies: List[Strategy],
        request: AllocationRequest,
        config_result: Optional[ValidationResult] = None,
    ) -> AllocationResult:
        """Run the pipeline on already loaded strategies."""
        total = request.total_investment
        constraints = request.constraints

        raw = self.calculator.calculate(strategies, total, request.excluded_stock_ids)

        validation = ValidationResult()
        if config_result is not None:
            validation.merge(config_result)
        validation.merge(self.validator.validate_stock_allocations(raw.allocations, constraints, total))

        result = AllocationResult(
            allocations=[],
            total_investment=total,
            constraints=constraints,
            validation=validation,
        )
        result.unallocated_breakdown[UNASSIGNED] = raw.unassigned
        result.unallocated_breakdown[NO_CANDIDATES] = raw.no_candidates

        corrected = self._apply_constraints(raw, constraints, result)
        result.allocations = self._apply_prices(corrected, result)

        validation.merge(self.validator.validate_portfolio_totals(result.allocations, total))

        logger.info(
            f"Allocated {mask_amount(result.total_allocated)} of {mask_amount(total)} across "
            f"{len(result.allocations)} stocks ({len(result.dropped)} dropped, "
            f"{mask_amount(result.unallocated_cash)} unallocated)"
        )
        return result

    def _apply_constraints(
        self,
        raw: CalculationOutput,
        constraints: AllocationConstraints,
        result: AllocationResult,
    ) -> List[StockAllocation]:
        """
        Single-pass correction: clip to the ceiling, then drop below the minimum.

        Released cash is not redistributed.
        """
        total = raw.total_investment
        ceiling = constraints.max_allocation_amount(total)
        survivors = []

        for allocation in raw.allocations:
            if allocation.allocation_value > ceiling:
                excess = allocation.allocation_value - ceiling
                logger.info(f"Clipping {allocation.ticker} to {mask_amount(ceiling)} (excess {mask_amount(excess)})")
                strategy_ids = list(allocation.strategy_contrib.keys())
                scaled = split_proportionally(ceiling, list(allocation.strategy_contrib.values()))
                allocation.strategy_contrib = dict(zip(strategy_ids, scaled))
                allocation.allocation_value = ceiling
                allocation.weight = ceiling / total * HUNDRED
                result.unallocated_breakdown[MAX_ALLOCATION_EXCESS] += excess

            if allocation.allocation_value < constraints.min_allocation_amount:
                logger.info(f"Dropping {allocation.ticker}: below minimum allocation")
                self._drop(result, allocation, DROP_BELOW_MINIMUM, BELOW_MINIMUM, allocation.allocation_value)
                continue

            survivors.append(allocation)

        return survivors

    def fetch_prices(self, tickers: List[str]) -> Dict[str, Decimal]:
        """One batched lookup bounded by the price timeout."""
        if not tickers:
            return {}
        future = self._price_executor.submit(self.price_source.get_current_prices, tickers)
        try:
            return future.result(timeout=self.price_timeout_seconds)
        except FutureTimeoutError:
            logger.warning(
                f"Price lookup timed out after {self.price_timeout_seconds}s; "
                f"treating {len(tickers)} tickers as unavailable"
            )
            if not future.cancel():
                self._track_hung_lookup(future)
            return {}
        except PriceServiceError as e:
            logger.error(f"Price service failed: {e}")
            raise

    @property
    def hung_lookups(self) -> int:
        """Timed-out lookups whose provider call has not returned yet."""
        with self._hung_lock:
            return self._hung_lookups

    def _track_hung_lookup(self, future) -> None:
        with self._hung_lock:
            self._hung_lookups += 1
            hung = self._hung_lookups
        logger.warning(f"{hung}/{self.price_workers} price lookup workers held by timed-out provider calls")
        future.add_done_callback(self._hung_lookup_finished)

    def _hung_lookup_finished(self, future) -> None:
        with self._hung_lock:
            self._hung_lookups -= 1
        logger.info("Timed-out price lookup returned; worker released")

    def _apply_prices(self, allocations: List[StockAllocation], result: AllocationResult) -> List[StockAllocation]:
        """Convert target values to whole-share quantities."""
        tickers = list(dict.fromkeys(a.ticker for a in allocations))
        prices = self.fetch_prices(tickers)
        priced = []

        for allocation in allocations:
            price = prices.get(allocation.ticker)
            if price is None or price <= 0:
                logger.warning(f"No usable price for {allocation.ticker}; dropping")
                self._drop(result, allocation, DROP_PRICE_UNAVAILABLE, PRICE_UNAVAILABLE, allocation.allocation_value)
                continue

            quantity = math.floor(allocation.allocation_value / price)
            if quantity <= 0:
                logger.info(f"Dropping {allocation.ticker}: allocation below one share at {price}")
                self._drop(result, allocation, DROP_ZERO_QUANTITY, ROUNDING, allocation.allocation_value)
                continue

            allocation.price = price
            allocation.quantity = quantity
            allocation.actual_value = price * quantity
            result.unallocated_breakdown[ROUNDING] += allocation.allocation_value - allocation.actual_value
            priced.append(allocation)

        return priced

    def _drop(
        self,
        result: AllocationResult,
        allocation: StockAllocation,
        reason: str,
        source: str,
        amount: Decimal,
    ) -> None:
        result.dropped.append(DroppedStock(
            stock_id=allocation.stock_id,
            ticker=allocation.ticker,
            amount=amount,
            reason=reason,
        ))
        result.unallocated_breakdown[source] += amount

    def shutdown(self) -> None:
        self._price_executor.shutdown(wait=False)
