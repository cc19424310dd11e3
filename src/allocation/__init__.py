"""Allocation domain: models, errors, calculator and validator."""

from .errors import (
    AllocationError,
    ValidationError,
    ConstraintViolationError,
    PriceUnavailableError,
    PriceServiceError,
    PersistenceError,
    PortfolioNotFoundError,
)
from .models import (
    AllocationConstraints,
    AllocationRequest,
    AllocationResult,
    Signal,
    StockAllocation,
    Strategy,
    StrategyStock,
    WeightMode,
)

__all__ = [
    "AllocationError",
    "ValidationError",
    "ConstraintViolationError",
    "PriceUnavailableError",
    "PriceServiceError",
    "PersistenceError",
    "PortfolioNotFoundError",
    "AllocationConstraints",
    "AllocationRequest",
    "AllocationResult",
    "Signal",
    "StockAllocation",
    "Strategy",
    "StrategyStock",
    "WeightMode",
]
