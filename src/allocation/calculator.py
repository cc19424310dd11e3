"""Allocation calculator: turns weighted strategies into raw per-stock allocations."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from .errors import ValidationError
from .models import (
    HUNDRED,
    ZERO,
    StockAllocation,
    Strategy,
    WeightMode,
    to_decimal,
)
from ..utils.logging_utils import mask_amount

logger = logging.getLogger(__name__)


@dataclass
class CalculationOutput:
    """Raw allocations before constraint correction and pricing."""

    allocations: List[StockAllocation]
    total_investment: Decimal
    strategy_amounts: Dict[str, Decimal] = field(default_factory=dict)
    unassigned: Decimal = ZERO  # pool not claimed by any strategy
    no_candidates: Decimal = ZERO  # strategy amounts with no Buy candidates

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.allocation_value for a in self.allocations), ZERO)


def split_evenly(amount: Decimal, count: int) -> List[Decimal]:
    """
    Split an amount into count equal shares that sum exactly to amount.

    The last share absorbs whatever the division could not represent.
    """
    if count <= 0:
        return []
    share = amount / count
    shares = [share] * (count - 1)
    shares.append(amount - share * (count - 1))
    return shares


def split_proportionally(amount: Decimal, weights: List[Decimal]) -> List[Decimal]:
    """Split an amount by weights; the last part absorbs the remainder."""
    total_weight = sum(weights, ZERO)
    if not weights or total_weight <= 0:
        return [ZERO for _ in weights]
    parts = [amount * w / total_weight for w in weights[:-1]]
    parts.append(amount - sum(parts, ZERO))
    return parts


class AllocationCalculator:
    """Pure computation of strategy amounts and their equal split across Buy candidates."""

    def resolve_strategy_amounts(self, strategies: List[Strategy], total_investment: Decimal) -> Dict[str, Decimal]:
        """
        Resolve each strategy's currency amount.

        Budget strategies are honoured first in the order given, each capped by
        what is left of the pool. Percent strategies take their nominal share of
        the total; when those shares would not fit in what remains (or the
        percents add up to more than 100) they are rescaled proportionally to
        consume exactly the remainder.

        Args:
            strategies: Strategies in insertion order
            total_investment: Total pool to distribute

        Returns:
            Dict mapping strategy ID to amount, in the order strategies were given
        """
        amounts: Dict[str, Decimal] = {}
        remaining = total_investment

        for strategy in strategies:
            if strategy.weight_mode != WeightMode.BUDGET:
                continue
            amount = min(max(strategy.weight_value, ZERO), remaining)
            if amount < strategy.weight_value:
                logger.warning(
                    f"Budget strategy {strategy.name} reduced to {mask_amount(amount)} "
                    f"(requested {mask_amount(strategy.weight_value)})"
                )
            amounts[strategy.id] = amount
            remaining -= amount

        percent_strategies = [s for s in strategies if s.weight_mode == WeightMode.PERCENT]
        percent_weights = [max(s.weight_value, ZERO) for s in percent_strategies]
        percent_sum = sum(percent_weights, ZERO)
        nominal = [total_investment * w / HUNDRED for w in percent_weights]

        if percent_sum > HUNDRED or sum(nominal, ZERO) > remaining:
            logger.warning(
                f"Percent strategies ({percent_sum}%) exceed the remaining pool; rescaling proportionally"
            )
            percent_amounts = split_proportionally(remaining, percent_weights)
        else:
            percent_amounts = nominal

        for strategy, amount in zip(percent_strategies, percent_amounts):
            amounts[strategy.id] = amount

        # Preserve insertion order of the input strategies
        return {s.id: amounts[s.id] for s in strategies}

    def calculate(
        self,
        strategies: List[Strategy],
        total_investment: Decimal,
        excluded_stock_ids: Optional[Iterable[str]] = None,
    ) -> CalculationOutput:
        """
        Compute raw allocations.

        Args:
            strategies: Strategies with nested stock eligibility and signals
            total_investment: Total amount to distribute
            excluded_stock_ids: Stocks removed from every candidate set up front

        Returns:
            CalculationOutput with allocations in first-seen order
        """
        total_investment = to_decimal(total_investment)
        if total_investment <= 0:
            raise ValidationError("Total investment must be positive", field="total_investment")

        excluded: Set[str] = set(excluded_stock_ids or [])
        strategy_amounts = self.resolve_strategy_amounts(strategies, total_investment)
        unassigned = total_investment - sum(strategy_amounts.values(), ZERO)
        no_candidates = ZERO

        by_stock: Dict[str, StockAllocation] = {}

        for strategy in strategies:
            amount = strategy_amounts[strategy.id]
            if amount <= 0:
                continue

            candidates = []
            seen: Set[str] = set()
            for stock in strategy.stocks:
                if stock.stock_id in excluded or stock.stock_id in seen:
                    continue
                if stock.is_candidate():
                    candidates.append(stock)
                    seen.add(stock.stock_id)

            if not candidates:
                logger.info(f"Strategy {strategy.name} has no eligible Buy stocks; {mask_amount(amount)} left unallocated")
                no_candidates += amount
                continue

            for stock, share in zip(candidates, split_evenly(amount, len(candidates))):
                allocation = by_stock.get(stock.stock_id)
                if allocation is None:
                    allocation = StockAllocation(stock_id=stock.stock_id, ticker=stock.ticker, name=stock.name)
                    by_stock[stock.stock_id] = allocation
                allocation.strategy_contrib[strategy.id] = allocation.strategy_contrib.get(strategy.id, ZERO) + share
                allocation.allocation_value += share

        allocations = list(by_stock.values())
        for allocation in allocations:
            allocation.weight = allocation.allocation_value / total_investment * HUNDRED

        logger.debug(f"Calculated {len(allocations)} raw allocations from {len(strategies)} strategies")
        return CalculationOutput(
            allocations=allocations,
            total_investment=total_investment,
            strategy_amounts=strategy_amounts,
            unassigned=unassigned,
            no_candidates=no_candidates,
        )
