"""Tests for persistence models."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from src.allocation.models import AllocationConstraints
from src.persistence.models import (
    EVENT_COMMIT,
    EVENT_UPDATE,
    NAVHistoryRecord,
    PortfolioRecord,
    PositionRecord,
)


class TestPortfolioRecord:
    """Tests for PortfolioRecord dataclass."""

    def test_to_dict_stores_money_as_strings(self):
        record = PortfolioRecord(
            id='p1',
            user_id='user-1',
            name='Core',
            total_investment=Decimal('10000.50'),
            strategy_ids=['s1', 's2'],
            constraints=AllocationConstraints(max_allocation_per_stock=25, min_allocation_amount=200),
            created_at=datetime(2024, 1, 2),
            updated_at=datetime(2024, 1, 3),
        )

        result = record.to_dict()

        assert result['total_investment'] == '10000.50'
        assert result['constraints'] == {'max_allocation_per_stock': '25', 'min_allocation_amount': '200'}
        assert result['strategy_ids'] == ['s1', 's2']
        assert 'id' not in result

    def test_from_dict_defaults(self):
        """Missing fields fall back to defaults."""
        record = PortfolioRecord.from_dict('p1', {'user_id': 'user-1', 'total_investment': '500'})

        assert record.id == 'p1'
        assert record.total_investment == Decimal('500')
        assert record.strategy_ids == []
        assert record.constraints.max_allocation_per_stock == Decimal('20')
        assert record.constraints.min_allocation_amount == Decimal('100')


class TestPositionRecord:
    """Tests for PositionRecord dataclass."""

    def test_doc_id_and_cost_basis(self):
        position = PositionRecord(
            portfolio_id='p1',
            stock_id='st1',
            ticker='aapl',
            quantity=39,
            entry_price=Decimal('150.50'),
            allocation_value=Decimal('6000'),
        )

        assert position.doc_id == 'p1_st1'
        assert position.cost_basis == Decimal('5869.50')
        assert position.to_dict()['ticker'] == 'AAPL'

    def test_from_dict(self):
        position = PositionRecord.from_dict({
            'portfolio_id': 'p1',
            'stock_id': 'st1',
            'ticker': 'MSFT',
            'quantity': '12',
            'entry_price': '100.25',
            'allocation_value': '1250',
            'strategy_contrib': {'s1': '750', 's2': '500'},
        })

        assert position.quantity == 12
        assert position.entry_price == Decimal('100.25')
        assert position.strategy_contrib == {'s1': Decimal('750'), 's2': Decimal('500')}


class TestNAVHistoryRecord:
    """Tests for NAVHistoryRecord dataclass."""

    def test_doc_id_is_portfolio_and_timestamp(self):
        entry = NAVHistoryRecord(
            portfolio_id='p1',
            timestamp=datetime(2024, 1, 2, 10, 30),
            nav=Decimal('9800'),
            pnl=Decimal('-200'),
            drawdown=Decimal('-6.67'),
            event=EVENT_COMMIT,
        )

        assert entry.doc_id == 'p1_2024-01-02T10:30:00+00:00'
        assert entry.to_dict()['drawdown'] == '-6.67'

    def test_from_dict_defaults(self):
        entry = NAVHistoryRecord.from_dict({
            'portfolio_id': 'p1',
            'timestamp': datetime(2024, 1, 2),
            'nav': '9000',
        })

        assert entry.pnl == 0
        assert entry.drawdown == 0
        assert entry.event == EVENT_UPDATE

    def test_from_dict_normalises_timestamp_to_utc(self):
        """Firestore hands back aware datetimes; they are converted to UTC."""
        entry = NAVHistoryRecord.from_dict({
            'portfolio_id': 'p1',
            'timestamp': datetime(2024, 1, 2, 15, 0, tzinfo=timezone(timedelta(hours=5))),
            'nav': '9000',
        })

        assert entry.timestamp == datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
        assert entry.timestamp.utcoffset() == timedelta(0)

    def test_naive_timestamp_taken_as_utc(self):
        entry = NAVHistoryRecord(portfolio_id='p1', timestamp=datetime(2024, 1, 2), nav=Decimal('9000'), pnl=Decimal('0'))

        assert entry.timestamp.tzinfo is timezone.utc
        assert entry.timestamp < datetime(2024, 1, 2, 0, 1, tzinfo=timezone.utc)

    def test_to_dict_rounds_money_to_cents(self):
        entry = NAVHistoryRecord(
            portfolio_id='p1',
            timestamp=datetime(2024, 1, 2),
            nav=Decimal('9311.7549'),
            pnl=Decimal('-688.2451'),
        )

        assert entry.to_dict()['nav'] == '9311.75'
        assert entry.to_dict()['pnl'] == '-688.25'
