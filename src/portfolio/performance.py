"""Performance reducers over a portfolio's NAV history."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

from ..allocation.models import HUNDRED, ZERO, format_money, to_decimal
from ..persistence.models import NAVHistoryRecord

SECONDS_PER_DAY = Decimal("86400")
DAYS_PER_YEAR = Decimal("365.25")


def calculate_drawdown(nav: Decimal, high_water_mark: Decimal) -> Decimal:
    """
    Percentage below the high-water mark.

    Returns 0 when nav is at or above the mark, a negative percent otherwise.
    """
    if high_water_mark <= 0 or nav >= high_water_mark:
        return ZERO
    return (nav - high_water_mark) / high_water_mark * HUNDRED


def high_water_marks(navs: Sequence[Decimal]) -> List[Decimal]:
    """Running maximum of a NAV series."""
    marks = []
    current: Optional[Decimal] = None
    for nav in navs:
        current = nav if current is None else max(current, nav)
        marks.append(current)
    return marks


def drawdown_series(navs: Sequence[Decimal]) -> List[Decimal]:
    """Drawdown of each point against the running high-water mark."""
    return [calculate_drawdown(nav, mark) for nav, mark in zip(navs, high_water_marks(navs))]


def _pct(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass
class PerformanceMetrics:
    """Performance summary derived from a NAV series."""

    total_return: Decimal
    total_return_pct: Decimal
    days_active: Decimal
    high_water_mark: Decimal
    annualized_return: Optional[Decimal] = None
    max_drawdown: Optional[Decimal] = None
    current_drawdown: Optional[Decimal] = None
    current_nav: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "total_return": format_money(self.total_return),
            "total_return_pct": _pct(self.total_return_pct),
            "annualized_return": _pct(self.annualized_return),
            "max_drawdown": _pct(self.max_drawdown),
            "current_drawdown": _pct(self.current_drawdown),
            "days_active": _pct(self.days_active),
            "high_water_mark": format_money(self.high_water_mark),
            "current_nav": format_money(self.current_nav) if self.current_nav is not None else None,
        }


def calculate_performance_metrics(history: List[NAVHistoryRecord], initial_investment: Decimal) -> PerformanceMetrics:
    """
    Reduce an ordered NAV series to performance metrics.

    Args:
        history: NAV entries ordered by timestamp ascending
        initial_investment: Baseline the returns are measured against

    Returns:
        PerformanceMetrics (all-zero with no optional values when history is empty)
    """
    initial_investment = to_decimal(initial_investment)
    if not history:
        return PerformanceMetrics(
            total_return=ZERO,
            total_return_pct=ZERO,
            days_active=ZERO,
            high_water_mark=initial_investment,
        )

    latest = history[-1]
    total_return = latest.nav - initial_investment
    total_return_pct = total_return / initial_investment * HUNDRED if initial_investment > 0 else ZERO

    elapsed = history[-1].timestamp - history[0].timestamp
    days_active = Decimal(str(elapsed.total_seconds())) / SECONDS_PER_DAY

    annualized_return = None
    if days_active > 0 and initial_investment > 0:
        years = days_active / DAYS_PER_YEAR
        annualized_return = (latest.nav / initial_investment - 1) / years * HUNDRED

    return PerformanceMetrics(
        total_return=total_return,
        total_return_pct=total_return_pct,
        days_active=days_active,
        high_water_mark=max(entry.nav for entry in history),
        annualized_return=annualized_return,
        max_drawdown=min(entry.drawdown for entry in history),
        current_drawdown=latest.drawdown,
        current_nav=latest.nav,
    )
