"""Constraint validation for computed allocations and constraint configuration."""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Set

from .models import (
    HUNDRED,
    SEVERITY_WARNING,
    ZERO,
    AllocationConstraints,
    ConstraintViolation,
    StockAllocation,
    Strategy,
    ValidationResult,
    format_money,
)

logger = logging.getLogger(__name__)

# Violation types
MIN_ALLOCATION_VIOLATION = "MIN_ALLOCATION_VIOLATION"
MAX_ALLOCATION_VIOLATION = "MAX_ALLOCATION_VIOLATION"
LOW_ALLOCATION_RATIO = "LOW_ALLOCATION_RATIO"
CONCENTRATION_RISK = "CONCENTRATION_RISK"
INVALID_MAX_ALLOCATION = "INVALID_MAX_ALLOCATION"
INVALID_MIN_ALLOCATION = "INVALID_MIN_ALLOCATION"
ZERO_INVESTMENT = "ZERO_INVESTMENT"
CONFLICTING_CONSTRAINTS = "CONFLICTING_CONSTRAINTS"
HIGH_MIN_ALLOCATION = "HIGH_MIN_ALLOCATION"

# Config violations that make a request unusable rather than merely risky
BLOCKING_CONFIG_VIOLATIONS = {INVALID_MAX_ALLOCATION, INVALID_MIN_ALLOCATION, ZERO_INVESTMENT}

MIN_ALLOCATION_RATIO = Decimal("0.5")
MIN_DIVERSIFIED_STOCKS = 3


def _pct(value: Decimal, places: str = "0.1") -> str:
    return str(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


class ConstraintValidator:
    """
    Validates allocations against constraints.

    Validation is advisory: it never mutates allocations and never raises.
    Callers decide whether a non-valid result blocks the operation.
    """

    def validate_allocations(
        self,
        allocations: List[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> ValidationResult:
        """Run per-stock and portfolio-level checks."""
        result = self.validate_stock_allocations(allocations, constraints, total_investment)
        result.merge(self.validate_portfolio_totals(allocations, total_investment))
        return result

    def validate_stock_allocations(
        self,
        allocations: List[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> ValidationResult:
        """Check every allocation against the min amount and max percentage."""
        result = ValidationResult()
        for allocation in allocations:
            for violation in self._validate_single_allocation(allocation, constraints, total_investment):
                result.add(violation)
        return result

    def _validate_single_allocation(
        self,
        allocation: StockAllocation,
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> List[ConstraintViolation]:
        violations = []

        if allocation.allocation_value < constraints.min_allocation_amount:
            violations.append(ConstraintViolation(
                type=MIN_ALLOCATION_VIOLATION,
                message=(
                    f"Stock {allocation.ticker} allocation ({format_money(allocation.allocation_value)}) "
                    f"is below minimum required ({format_money(constraints.min_allocation_amount)})"
                ),
                stock_ticker=allocation.ticker,
                current_value=allocation.allocation_value,
                limit_value=constraints.min_allocation_amount,
                suggestions=[
                    f"Increase allocation to at least {format_money(constraints.min_allocation_amount)}",
                    "Consider removing this stock if minimum allocation cannot be met",
                    "Reduce the number of stocks in your strategies to increase individual allocations",
                    "Lower the minimum allocation amount for this request",
                ],
            ))

        max_amount = constraints.max_allocation_amount(total_investment)
        if allocation.allocation_value > max_amount:
            violations.append(ConstraintViolation(
                type=MAX_ALLOCATION_VIOLATION,
                message=(
                    f"Stock {allocation.ticker} allocation ({_pct(allocation.weight, '0.01')}%) exceeds "
                    f"maximum allowed ({constraints.max_allocation_per_stock}%, "
                    f"{format_money(max_amount)})"
                ),
                stock_ticker=allocation.ticker,
                current_value=allocation.weight,
                limit_value=constraints.max_allocation_per_stock,
                suggestions=[
                    f"Reduce allocation to maximum {constraints.max_allocation_per_stock}% ({format_money(max_amount)})",
                    "Add more stocks to your strategies to distribute the allocation",
                    "Consider increasing your total investment amount",
                    "Adjust strategy weights to reduce concentration in this stock",
                ],
            ))

        return violations

    def validate_portfolio_totals(self, allocations: List[StockAllocation], total_investment: Decimal) -> ValidationResult:
        """
        Portfolio-level checks: allocation ratio and concentration.

        Priced allocations count with their actual (whole-share) value,
        unpriced ones with their target value.
        """
        result = ValidationResult()
        if total_investment <= 0:
            return result

        total_allocated = sum(
            (a.actual_value if a.price is not None else a.allocation_value for a in allocations),
            ZERO,
        )
        ratio = total_allocated / total_investment
        if ratio < MIN_ALLOCATION_RATIO:
            unallocated = total_investment - total_allocated
            unallocated_pct = unallocated / total_investment * HUNDRED
            result.add(ConstraintViolation(
                type=LOW_ALLOCATION_RATIO,
                message=(
                    f"Only {_pct(ratio * HUNDRED)}% of total investment is allocated, leaving "
                    f"{format_money(unallocated)} ({_pct(unallocated_pct)}%) unallocated"
                ),
                current_value=unallocated_pct,
                limit_value=Decimal("50"),
                suggestions=[
                    "Consider lowering the minimum allocation amount constraint",
                    "Add more stocks with 'Buy' signals to your strategies",
                    "Review your strategy stock eligibility settings",
                    "Consider adjusting your maximum allocation percentage to allow larger positions",
                ],
            ))

        if 0 < len(allocations) < MIN_DIVERSIFIED_STOCKS:
            result.add(ConstraintViolation(
                type=CONCENTRATION_RISK,
                message=f"Portfolio has only {len(allocations)} stocks, which may increase concentration risk",
                severity=SEVERITY_WARNING,
                current_value=Decimal(len(allocations)),
                limit_value=Decimal(MIN_DIVERSIFIED_STOCKS),
                suggestions=[
                    "Consider adding more stocks to your strategies for better diversification",
                    "Review your stock signals - ensure more stocks have 'Buy' signals",
                    "Check strategy stock eligibility settings",
                ],
            ))

        return result

    def validate_constraints_config(self, constraints: AllocationConstraints, total_investment: Decimal) -> ValidationResult:
        """Pre-flight check of the constraint configuration itself."""
        result = ValidationResult()
        max_pct = constraints.max_allocation_per_stock
        min_amount = constraints.min_allocation_amount

        if max_pct <= 0:
            result.add(ConstraintViolation(
                type=INVALID_MAX_ALLOCATION,
                message="Maximum allocation per stock must be greater than 0%",
                current_value=max_pct,
                limit_value=ZERO,
                suggestions=["Set maximum allocation per stock to a positive percentage"],
            ))
        elif max_pct > HUNDRED:
            result.add(ConstraintViolation(
                type=INVALID_MAX_ALLOCATION,
                message="Maximum allocation per stock cannot exceed 100%",
                current_value=max_pct,
                limit_value=HUNDRED,
                suggestions=["Set maximum allocation per stock to 100% or less"],
            ))

        if min_amount < 0:
            result.add(ConstraintViolation(
                type=INVALID_MIN_ALLOCATION,
                message="Minimum allocation amount cannot be negative",
                current_value=min_amount,
                limit_value=ZERO,
                suggestions=["Set minimum allocation amount to zero or a positive amount"],
            ))

        if total_investment <= 0:
            result.add(ConstraintViolation(
                type=ZERO_INVESTMENT,
                message="Total investment must be greater than zero",
                current_value=total_investment,
                limit_value=ZERO,
                suggestions=["Set a positive total investment amount"],
            ))
            return result

        min_pct = min_amount / total_investment * HUNDRED
        if min_pct > max_pct > 0:
            result.add(ConstraintViolation(
                type=CONFLICTING_CONSTRAINTS,
                severity=SEVERITY_WARNING,
                message=(
                    f"Minimum allocation amount ({format_money(min_amount)}, {_pct(min_pct, '0.01')}% of total) "
                    f"exceeds maximum allocation percentage ({max_pct}%)"
                ),
                current_value=min_pct,
                limit_value=max_pct,
                suggestions=[
                    "Reduce minimum allocation amount",
                    "Increase maximum allocation percentage",
                    "Increase total investment amount",
                ],
            ))

        if min_amount > 0 and total_investment / min_amount < 2:
            result.add(ConstraintViolation(
                type=HIGH_MIN_ALLOCATION,
                severity=SEVERITY_WARNING,
                message=(
                    f"Minimum allocation amount ({format_money(min_amount)}) is too high - "
                    f"would allow fewer than 2 stocks in portfolio"
                ),
                current_value=min_amount,
                limit_value=total_investment / 2,
                suggestions=[
                    "Reduce minimum allocation amount to allow more diversification",
                    "Increase total investment amount",
                ],
            ))

        return result

    def suggest_constraint_adjustments(
        self,
        strategies: List[Strategy],
        total_investment: Decimal,
        constraints: AllocationConstraints,
    ) -> List[str]:
        """
        Suggest constraint values that fit the number of Buy candidates.

        Args:
            strategies: Strategies with stock eligibility data
            total_investment: Total amount to invest
            constraints: Constraints currently in use

        Returns:
            Human readable suggestions (empty when current constraints fit)
        """
        suggestions: List[str] = []
        candidates: Set[str] = set()
        for strategy in strategies:
            candidates.update(s.stock_id for s in strategy.stocks if s.is_candidate())

        count = len(candidates)
        if count == 0 or total_investment <= 0:
            return suggestions

        suggested_min = total_investment / (count * 2)
        if suggested_min < constraints.min_allocation_amount:
            suggestions.append(
                f"Consider reducing minimum allocation to {suggested_min.quantize(Decimal('1'), rounding=ROUND_HALF_UP)} "
                f"to allow more diversification"
            )

        suggested_max = HUNDRED / max(count // 2, 1)
        if suggested_max > constraints.max_allocation_per_stock:
            suggestions.append(
                f"Consider increasing maximum allocation to "
                f"{min(suggested_max, HUNDRED).quantize(Decimal('1'), rounding=ROUND_HALF_UP)}% to allow proper distribution"
            )

        return suggestions
