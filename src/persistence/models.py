"""Data models for Firestore persistence."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from ..allocation.models import ZERO, AllocationConstraints, AllocationResult, format_money, to_decimal

# NAV history events
EVENT_COMMIT = "commit"
EVENT_REBALANCE = "rebalance"
EVENT_UPDATE = "update"


def _decimal_or_zero(value) -> Decimal:
    return to_decimal(value) if value is not None else ZERO


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Timezone-aware UTC view of a timestamp. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class PortfolioRecord:
    """Represents a portfolio in Firestore."""

    id: str
    user_id: str
    name: str
    total_investment: Decimal
    strategy_ids: List[str] = field(default_factory=list)
    constraints: AllocationConstraints = field(default_factory=AllocationConstraints)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.created_at = as_utc(self.created_at)
        self.updated_at = as_utc(self.updated_at)

    def to_dict(self) -> dict:
        """Convert to Firestore-compatible dictionary."""
        return {
            "user_id": self.user_id,
            "name": self.name,
            "total_investment": str(self.total_investment),
            "strategy_ids": list(self.strategy_ids),
            "constraints": self.constraints.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, portfolio_id: str, data: dict) -> "PortfolioRecord":
        return cls(
            id=portfolio_id,
            user_id=data.get("user_id", ""),
            name=data.get("name", ""),
            total_investment=_decimal_or_zero(data.get("total_investment")),
            strategy_ids=list(data.get("strategy_ids") or []),
            constraints=AllocationConstraints.from_dict(data.get("constraints") or {}),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class PositionRecord:
    """Represents a held position in Firestore (one per portfolio and stock)."""

    portfolio_id: str
    stock_id: str
    ticker: str
    quantity: int
    entry_price: Decimal
    allocation_value: Decimal
    strategy_contrib: Dict[str, Decimal] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.created_at = as_utc(self.created_at)

    @property
    def doc_id(self) -> str:
        return f"{self.portfolio_id}_{self.stock_id}"

    @property
    def cost_basis(self) -> Decimal:
        return self.entry_price * self.quantity

    def to_dict(self) -> dict:
        """Convert to Firestore-compatible dictionary."""
        return {
            "portfolio_id": self.portfolio_id,
            "stock_id": self.stock_id,
            "ticker": self.ticker.upper(),
            "quantity": self.quantity,
            "entry_price": str(self.entry_price),
            "allocation_value": format_money(self.allocation_value),
            "strategy_contrib": {k: format_money(v) for k, v in self.strategy_contrib.items()},
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PositionRecord":
        return cls(
            portfolio_id=data["portfolio_id"],
            stock_id=data["stock_id"],
            ticker=data.get("ticker", ""),
            quantity=int(data.get("quantity", 0)),
            entry_price=_decimal_or_zero(data.get("entry_price")),
            allocation_value=_decimal_or_zero(data.get("allocation_value")),
            strategy_contrib={k: to_decimal(v) for k, v in (data.get("strategy_contrib") or {}).items()},
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class NAVHistoryRecord:
    """Represents one point of a portfolio's NAV series in Firestore."""

    portfolio_id: str
    timestamp: datetime
    nav: Decimal
    pnl: Decimal
    drawdown: Decimal = ZERO  # percent below high-water mark, <= 0
    event: str = EVENT_UPDATE

    def __post_init__(self):
        self.timestamp = as_utc(self.timestamp)

    @property
    def doc_id(self) -> str:
        return f"{self.portfolio_id}_{self.timestamp.isoformat()}"

    def to_dict(self) -> dict:
        """Convert to Firestore-compatible dictionary."""
        return {
            "portfolio_id": self.portfolio_id,
            "timestamp": self.timestamp,
            "nav": format_money(self.nav),
            "pnl": format_money(self.pnl),
            "drawdown": str(self.drawdown),
            "event": self.event,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NAVHistoryRecord":
        return cls(
            portfolio_id=data["portfolio_id"],
            timestamp=data["timestamp"],
            nav=_decimal_or_zero(data.get("nav")),
            pnl=_decimal_or_zero(data.get("pnl")),
            drawdown=_decimal_or_zero(data.get("drawdown")),
            event=data.get("event", EVENT_UPDATE),
        )


@dataclass
class PersistedSnapshot:
    """What a commit or rebalance commit wrote, plus the result that produced it."""

    portfolio: PortfolioRecord
    positions: List[PositionRecord]
    nav_entry: NAVHistoryRecord
    result: Optional[AllocationResult] = None

    def to_dict(self) -> dict:
        return {
            "portfolio_id": self.portfolio.id,
            "portfolio": self.portfolio.to_dict(),
            "positions": [p.to_dict() for p in self.positions],
            "nav_entry": self.nav_entry.to_dict(),
            "result": self.result.to_dict() if self.result else None,
        }
