"""Error types raised by the allocation engine and portfolio service."""

from typing import Any, Dict, List, Optional

# Error type codes
CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
VALIDATION_ERROR = "VALIDATION_ERROR"
PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
PRICE_SERVICE_ERROR = "PRICE_SERVICE_ERROR"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
PORTFOLIO_NOT_FOUND = "PORTFOLIO_NOT_FOUND"


class AllocationError(Exception):
    """Base error carrying a machine readable type and optional details."""

    def __init__(self, error_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"

    def to_dict(self) -> dict:
        """Convert to a serializable dictionary."""
        return {
            "type": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AllocationError, ValueError):
    """Malformed request input (empty strategy list, bad constraint ranges, ...)."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(VALIDATION_ERROR, message, details)
        self.field = field


class ConstraintViolationError(AllocationError):
    """Raised when a commit is refused because the allocation violates constraints."""

    def __init__(self, message: str, violations: Optional[List[Any]] = None):
        self.violations = list(violations or [])
        super().__init__(
            CONSTRAINT_VIOLATION,
            message,
            {"violations": [v.to_dict() if hasattr(v, "to_dict") else v for v in self.violations]},
        )


class PriceUnavailableError(AllocationError):
    """No usable price for a single ticker."""

    def __init__(self, ticker: str, reason: str = "no price available"):
        super().__init__(PRICE_UNAVAILABLE, f"Price unavailable for {ticker}: {reason}", {"ticker": ticker})
        self.ticker = ticker


class PriceServiceError(AllocationError):
    """The price source failed as a whole. Callers may retry."""

    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(PRICE_SERVICE_ERROR, message, details)


class PersistenceError(AllocationError):
    """A storage operation failed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(PERSISTENCE_ERROR, message, details)


class PortfolioNotFoundError(AllocationError):
    """The requested portfolio does not exist."""

    def __init__(self, portfolio_id: str):
        super().__init__(PORTFOLIO_NOT_FOUND, f"Portfolio not found: {portfolio_id}", {"portfolio_id": portfolio_id})
        self.portfolio_id = portfolio_id
