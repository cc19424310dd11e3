"""Portfolio commit, rebalance and NAV tracking."""

from .performance import PerformanceMetrics, calculate_drawdown, calculate_performance_metrics
from .portfolio_service import PortfolioMeta, PortfolioService

__all__ = [
    "PerformanceMetrics",
    "PortfolioMeta",
    "PortfolioService",
    "calculate_drawdown",
    "calculate_performance_metrics",
]
