"""Tests for AllocationCalculator."""

import pytest
from decimal import Decimal

from src.allocation.calculator import AllocationCalculator, split_evenly, split_proportionally
from src.allocation.errors import ValidationError
from src.allocation.models import Signal


@pytest.fixture
def calculator():
    return AllocationCalculator()


class TestSplitHelpers:
    """Tests for exact splitting helpers."""

    def test_split_evenly_sums_exactly(self):
        """Shares always add back up to the amount."""
        shares = split_evenly(Decimal("1000"), 3)

        assert len(shares) == 3
        assert sum(shares) == Decimal("1000")
        assert shares[0] == shares[1]

    def test_split_evenly_zero_count(self):
        """No shares for no recipients."""
        assert split_evenly(Decimal("100"), 0) == []

    def test_split_proportionally(self):
        """Parts follow the weights and sum to the amount."""
        parts = split_proportionally(Decimal("2000"), [Decimal("3000"), Decimal("2000")])

        assert parts == [Decimal("1200"), Decimal("800")]


class TestStrategyWeightResolution:
    """Tests for resolving strategy currency amounts."""

    def test_percent_strategies(self, calculator, make_strategy):
        """Percent strategies take their share of the total."""
        s1 = make_strategy("s1", "percent", 60)
        s2 = make_strategy("s2", "percent", 40)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("10000"))

        assert amounts == {"s1": Decimal("6000"), "s2": Decimal("4000")}

    def test_budget_then_percent(self, calculator, make_strategy):
        """Budgets are honoured and percents still use the nominal share when it fits."""
        s1 = make_strategy("s1", "budget", 3000)
        s2 = make_strategy("s2", "percent", 50)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("10000"))

        assert amounts["s1"] == Decimal("3000")
        assert amounts["s2"] == Decimal("5000")

    def test_budget_capped_by_remaining_pool(self, calculator, make_strategy):
        """A later budget strategy only receives what is left."""
        s1 = make_strategy("s1", "budget", 8000)
        s2 = make_strategy("s2", "budget", 5000)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("10000"))

        assert amounts == {"s1": Decimal("8000"), "s2": Decimal("2000")}

    def test_percent_over_100_rescaled(self, calculator, make_strategy):
        """Percent weights above 100 are rescaled to consume exactly the pool."""
        s1 = make_strategy("s1", "percent", 80)
        s2 = make_strategy("s2", "percent", 70)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("10000"))

        assert sum(amounts.values()) == Decimal("10000")
        assert amounts["s1"].quantize(Decimal("0.01")) == Decimal("5333.33")
        assert amounts["s2"].quantize(Decimal("0.01")) == Decimal("4666.67")

    def test_percent_rescaled_into_remaining_after_budget(self, calculator, make_strategy):
        """Nominal percent amounts that do not fit after budgets are scaled down."""
        s1 = make_strategy("s1", "budget", 6000)
        s2 = make_strategy("s2", "percent", 60)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("10000"))

        assert amounts["s1"] == Decimal("6000")
        assert amounts["s2"] == Decimal("4000")

    def test_order_follows_input(self, calculator, make_strategy):
        """Returned mapping preserves input order."""
        s1 = make_strategy("s1", "percent", 10)
        s2 = make_strategy("s2", "budget", 100)

        amounts = calculator.resolve_strategy_amounts([s1, s2], Decimal("1000"))

        assert list(amounts.keys()) == ["s1", "s2"]


class TestCalculate:
    """Tests for distribution and aggregation."""

    def test_equal_split_within_strategy(self, calculator, make_strategy, make_stock):
        """Strategy amount is split equally across Buy candidates."""
        s1 = make_strategy("s1", "percent", 100, [make_stock("a"), make_stock("b"), make_stock("c")])

        output = calculator.calculate([s1], Decimal("900"))

        assert [a.allocation_value for a in output.allocations] == [Decimal("300")] * 3
        assert output.total_allocated == Decimal("900")

    def test_only_eligible_buy_stocks_are_candidates(self, calculator, make_strategy, make_stock):
        """Hold signals, missing signals and ineligible stocks are skipped."""
        s1 = make_strategy("s1", "percent", 100, [
            make_stock("a"),
            make_stock("b", signal=Signal.HOLD),
            make_stock("c", eligible=False),
            make_stock("d", signal=None),
        ])

        output = calculator.calculate([s1], Decimal("1000"))

        assert [a.stock_id for a in output.allocations] == ["a"]
        assert output.allocations[0].allocation_value == Decimal("1000")

    def test_strategy_without_candidates_goes_unallocated(self, calculator, make_strategy, make_stock):
        """A strategy with no Buy candidates contributes its whole amount to no_candidates."""
        s1 = make_strategy("s1", "percent", 60, [make_stock("a")])
        s2 = make_strategy("s2", "percent", 40, [make_stock("b", signal=Signal.HOLD)])

        output = calculator.calculate([s1, s2], Decimal("10000"))

        assert output.no_candidates == Decimal("4000")
        assert output.total_allocated == Decimal("6000")

    def test_aggregation_across_strategies(self, calculator, make_strategy, make_stock):
        """A stock in two strategies accumulates both contributions."""
        s1 = make_strategy("strategy1", "percent", 30, [make_stock("x")])
        s2 = make_strategy("strategy2", "percent", 20, [make_stock("x")])

        output = calculator.calculate([s1, s2], Decimal("10000"))

        allocation = output.allocations[0]
        assert allocation.allocation_value == Decimal("5000")
        assert allocation.strategy_contrib == {"strategy1": Decimal("3000"), "strategy2": Decimal("2000")}
        assert allocation.weight == Decimal("50")
        assert output.unassigned == Decimal("5000")

    def test_first_seen_order(self, calculator, make_strategy, make_stock):
        """Allocations are ordered by first appearance across strategies."""
        s1 = make_strategy("s1", "percent", 50, [make_stock("b"), make_stock("a")])
        s2 = make_strategy("s2", "percent", 50, [make_stock("c"), make_stock("b")])

        output = calculator.calculate([s1, s2], Decimal("1000"))

        assert [a.stock_id for a in output.allocations] == ["b", "a", "c"]

    def test_exclusions_redistribute_within_strategy(self, calculator, make_strategy, make_stock):
        """Excluded stocks are removed before splitting."""
        s1 = make_strategy("s1", "percent", 100, [make_stock("a"), make_stock("b")])

        output = calculator.calculate([s1], Decimal("1000"), excluded_stock_ids=["b"])

        assert len(output.allocations) == 1
        assert output.allocations[0].allocation_value == Decimal("1000")

    def test_contributions_match_allocation_value(self, calculator, make_strategy, make_stock):
        """Per-stock contributions sum to the allocation value."""
        s1 = make_strategy("s1", "percent", 33, [make_stock("a"), make_stock("b"), make_stock("c")])
        s2 = make_strategy("s2", "budget", 777, [make_stock("a"), make_stock("d")])

        output = calculator.calculate([s1, s2], Decimal("5000"))

        for allocation in output.allocations:
            assert allocation.contrib_total() == allocation.allocation_value
        assert output.total_allocated + output.unassigned + output.no_candidates == Decimal("5000")

    def test_non_positive_total_rejected(self, calculator, make_strategy):
        """Zero or negative totals raise ValidationError."""
        s1 = make_strategy("s1", "percent", 100)

        with pytest.raises(ValidationError):
            calculator.calculate([s1], Decimal("0"))
