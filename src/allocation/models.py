"""Data models for strategies, allocation requests and allocation results."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert a number or numeric string to Decimal without a float round trip."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    """Round a currency amount to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Render a currency amount as a string with two decimal places."""
    return str(round_money(value))


class WeightMode(str, Enum):
    """How a strategy's weight_value is interpreted."""

    PERCENT = "percent"
    BUDGET = "budget"


class Signal(str, Enum):
    """Latest signal classification for a stock."""

    BUY = "Buy"
    HOLD = "Hold"


# Unallocated cash sources
UNASSIGNED = "unassigned"
NO_CANDIDATES = "no_candidates"
MAX_ALLOCATION_EXCESS = "max_allocation_excess"
BELOW_MINIMUM = "below_minimum"
PRICE_UNAVAILABLE = "price_unavailable"
ROUNDING = "rounding"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

UNALLOCATED_SOURCES = (
    UNASSIGNED,
    NO_CANDIDATES,
    MAX_ALLOCATION_EXCESS,
    BELOW_MINIMUM,
    PRICE_UNAVAILABLE,
    ROUNDING,
)


@dataclass
class StrategyStock:
    """A stock as seen from one strategy: eligibility flag plus its latest signal."""

    stock_id: str
    ticker: str
    name: str = ""
    eligible: bool = True
    signal: Optional[Signal] = None

    def is_candidate(self) -> bool:
        """Eligible in this strategy and currently signalling Buy."""
        return self.eligible and self.signal == Signal.BUY


@dataclass
class Strategy:
    """A user's weighted strategy with its stock universe."""

    id: str
    user_id: str
    name: str
    weight_mode: WeightMode
    weight_value: Decimal
    stocks: List[StrategyStock] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.weight_mode = WeightMode(self.weight_mode)
        self.weight_value = to_decimal(self.weight_value)


@dataclass
class AllocationConstraints:
    """Per-request allocation limits."""

    max_allocation_per_stock: Decimal = Decimal("20")  # percent of total investment
    min_allocation_amount: Decimal = Decimal("100")  # currency

    def __post_init__(self):
        self.max_allocation_per_stock = to_decimal(self.max_allocation_per_stock)
        self.min_allocation_amount = to_decimal(self.min_allocation_amount)

    def max_allocation_amount(self, total_investment: Decimal) -> Decimal:
        """Currency ceiling for a single stock."""
        return total_investment * self.max_allocation_per_stock / HUNDRED

    def to_dict(self) -> dict:
        return {
            "max_allocation_per_stock": str(self.max_allocation_per_stock),
            "min_allocation_amount": str(self.min_allocation_amount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AllocationConstraints":
        return cls(
            max_allocation_per_stock=data.get("max_allocation_per_stock", "20"),
            min_allocation_amount=data.get("min_allocation_amount", "100"),
        )


@dataclass
class AllocationRequest:
    """Input to an allocation computation."""

    strategy_ids: List[str]
    total_investment: Decimal
    constraints: AllocationConstraints = field(default_factory=AllocationConstraints)
    excluded_stock_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.total_investment = to_decimal(self.total_investment)


@dataclass
class StockAllocation:
    """Allocation of cash to a single stock."""

    stock_id: str
    ticker: str
    name: str = ""
    weight: Decimal = ZERO  # percent of total investment
    allocation_value: Decimal = ZERO
    price: Optional[Decimal] = None
    quantity: int = 0
    actual_value: Decimal = ZERO
    strategy_contrib: Dict[str, Decimal] = field(default_factory=dict)

    def contrib_total(self) -> Decimal:
        return sum(self.strategy_contrib.values(), ZERO)

    def to_dict(self) -> dict:
        """Convert to a serializable dictionary with money as strings."""
        return {
            "stock_id": self.stock_id,
            "ticker": self.ticker,
            "name": self.name,
            "weight": str(self.weight.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)),
            "allocation_value": format_money(self.allocation_value),
            "price": format_money(self.price) if self.price is not None else None,
            "quantity": self.quantity,
            "actual_value": format_money(self.actual_value),
            "strategy_contrib": {k: format_money(v) for k, v in self.strategy_contrib.items()},
        }


@dataclass
class DroppedStock:
    """A candidate removed from the result and the amount it released."""

    stock_id: str
    ticker: str
    amount: Decimal
    reason: str

    def to_dict(self) -> dict:
        return {
            "stock_id": self.stock_id,
            "ticker": self.ticker,
            "amount": format_money(self.amount),
            "reason": self.reason,
        }


@dataclass
class ConstraintViolation:
    """A single validation finding with remediation hints."""

    type: str
    message: str
    stock_ticker: str = ""
    current_value: Decimal = ZERO
    limit_value: Decimal = ZERO
    suggestions: List[str] = field(default_factory=list)
    severity: str = SEVERITY_ERROR

    @property
    def is_blocking(self) -> bool:
        return self.severity == SEVERITY_ERROR

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "stock_ticker": self.stock_ticker,
            "current_value": str(self.current_value),
            "limit_value": str(self.limit_value),
            "suggestions": list(self.suggestions),
        }


@dataclass
class ValidationResult:
    """Outcome of a validation pass."""

    is_valid: bool = True
    violations: List[ConstraintViolation] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def add(self, violation: ConstraintViolation) -> None:
        self.violations.append(violation)
        if violation.is_blocking:
            self.is_valid = False

    @property
    def warnings(self) -> List[ConstraintViolation]:
        return [v for v in self.violations if not v.is_blocking]

    def merge(self, other: "ValidationResult") -> None:
        for violation in other.violations:
            self.add(violation)
        for suggestion in other.suggestions:
            if suggestion not in self.suggestions:
                self.suggestions.append(suggestion)

    def has(self, violation_type: str) -> bool:
        return any(v.type == violation_type for v in self.violations)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "violations": [v.to_dict() for v in self.violations],
            "suggestions": list(self.suggestions),
        }


@dataclass
class AllocationResult:
    """Constraint-corrected, priced allocation of a total investment."""

    allocations: List[StockAllocation]
    total_investment: Decimal
    constraints: AllocationConstraints
    validation: ValidationResult = field(default_factory=ValidationResult)
    dropped: List[DroppedStock] = field(default_factory=list)
    unallocated_breakdown: Dict[str, Decimal] = field(
        default_factory=lambda: {source: ZERO for source in UNALLOCATED_SOURCES}
    )

    @property
    def total_allocated(self) -> Decimal:
        """Value actually consumed by whole shares."""
        return sum((a.actual_value for a in self.allocations), ZERO)

    @property
    def total_target_value(self) -> Decimal:
        """Sum of pre-rounding allocation targets."""
        return sum((a.allocation_value for a in self.allocations), ZERO)

    @property
    def unallocated_cash(self) -> Decimal:
        return self.total_investment - self.total_allocated

    def to_dict(self) -> dict:
        """Convert to a serializable dictionary with money as strings."""
        return {
            "allocations": [a.to_dict() for a in self.allocations],
            "total_investment": format_money(self.total_investment),
            "total_allocated": format_money(self.total_allocated),
            "unallocated_cash": format_money(self.unallocated_cash),
            "unallocated_breakdown": {k: format_money(v) for k, v in self.unallocated_breakdown.items()},
            "dropped": [d.to_dict() for d in self.dropped],
            "constraints": self.constraints.to_dict(),
            "validation": self.validation.to_dict(),
        }
