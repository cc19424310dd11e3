"""Persistence manager for strategies, portfolios and NAV history in Firebase Firestore."""

import os
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .models import NAVHistoryRecord, PortfolioRecord, PositionRecord, as_utc
from .repository import PortfolioRepository, StrategyRepository
from ..allocation.errors import PersistenceError
from ..allocation.models import Signal, Strategy, StrategyStock, WeightMode, to_decimal

logger = logging.getLogger(__name__)

STRATEGIES = "strategies"
STOCKS = "stocks"
SIGNALS = "signals"
PORTFOLIOS = "portfolios"
POSITIONS = "positions"
NAV_HISTORY = "nav_history"


class PersistenceManager(StrategyRepository, PortfolioRepository):
    """Firestore-backed strategy and portfolio storage."""

    def __init__(self, project_id: str, credentials_path: Optional[str] = None, credentials_json: Optional[str] = None):
        """
        Initialize Firebase connection.

        Args:
            project_id: Firebase project ID
            credentials_path: Path to Firebase service account JSON file (optional if credentials_json is provided)
            credentials_json: Firebase service account JSON as string (optional if credentials_path is provided)
        """
        if not credentials_path and not credentials_json:
            raise ValueError("Either credentials_path or credentials_json must be provided")

        if credentials_json:
            try:
                cred_dict = json.loads(credentials_json)
                cred = credentials.Certificate(cred_dict)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in credentials_json: {e}")
        else:
            if not os.path.exists(credentials_path):
                raise FileNotFoundError(f"Firebase credentials file not found: {credentials_path}")
            cred = credentials.Certificate(credentials_path)

        try:
            firebase_admin.initialize_app(cred, {'projectId': project_id})
        except ValueError:
            # App already initialized
            pass

        self.db = firestore.client()
        self.project_id = project_id

    def _where(self, collection: str, field: str, value):
        return self.db.collection(collection).where(filter=FieldFilter(field, '==', value))

    # Strategies

    def _get_latest_signal(self, stock_id: str) -> Optional[Signal]:
        """Most recent signal for a stock, by signal date."""
        latest = None
        latest_date = None
        for doc in self._where(SIGNALS, 'stock_id', stock_id).stream():
            data = doc.to_dict()
            date = data.get('date')
            if latest_date is None or (date is not None and date > latest_date):
                latest_date = date
                latest = data.get('signal')
        return Signal(latest) if latest else None

    def _load_stock_info(self, stock_ids: List[str]) -> Dict[str, dict]:
        info = {}
        for stock_id in stock_ids:
            doc = self.db.collection(STOCKS).document(stock_id).get()
            data = doc.to_dict() if doc.exists else {}
            info[stock_id] = {
                'ticker': (data.get('ticker') or '').upper(),
                'name': data.get('name', ''),
                'signal': self._get_latest_signal(stock_id),
            }
        return info

    def _strategy_from_doc(self, strategy_id: str, data: dict, stock_info: Dict[str, dict]) -> Strategy:
        stocks = []
        for entry in data.get('stocks') or []:
            info = stock_info.get(entry['stock_id'], {})
            stocks.append(StrategyStock(
                stock_id=entry['stock_id'],
                ticker=info.get('ticker', ''),
                name=info.get('name', ''),
                eligible=bool(entry.get('eligible', True)),
                signal=info.get('signal'),
            ))
        return Strategy(
            id=strategy_id,
            user_id=data.get('user_id', ''),
            name=data.get('name', ''),
            weight_mode=WeightMode(data.get('weight_mode', WeightMode.PERCENT.value)),
            weight_value=to_decimal(data.get('weight_value', '0')),
            stocks=stocks,
            created_at=data.get('created_at'),
        )

    def _build_strategies(self, docs: List[tuple]) -> List[Strategy]:
        stock_ids = []
        for _, data in docs:
            for entry in data.get('stocks') or []:
                if entry['stock_id'] not in stock_ids:
                    stock_ids.append(entry['stock_id'])
        stock_info = self._load_stock_info(stock_ids)
        strategies = [self._strategy_from_doc(doc_id, data, stock_info) for doc_id, data in docs]
        if all(s.created_at is not None for s in strategies):
            strategies.sort(key=lambda s: s.created_at)
        return strategies

    def get_strategies(self, strategy_ids: List[str]) -> List[Strategy]:
        """Get strategies by ID with nested stock eligibility and latest signals."""
        try:
            docs = []
            for strategy_id in strategy_ids:
                doc = self.db.collection(STRATEGIES).document(strategy_id).get()
                if doc.exists:
                    docs.append((strategy_id, doc.to_dict()))
            return self._build_strategies(docs)
        except Exception as e:
            logger.error(f"Error loading strategies {strategy_ids}: {e}")
            raise PersistenceError(f"Failed to load strategies: {e}")

    def get_strategies_for_user(self, user_id: str) -> List[Strategy]:
        """Get all strategies for a user."""
        try:
            docs = [(doc.id, doc.to_dict()) for doc in self._where(STRATEGIES, 'user_id', user_id).stream()]
            return self._build_strategies(docs)
        except Exception as e:
            logger.error(f"Error loading strategies for user {user_id}: {e}")
            raise PersistenceError(f"Failed to load strategies for user {user_id}: {e}")

    # Portfolios

    def get_portfolio(self, portfolio_id: str) -> Optional[PortfolioRecord]:
        """Get a portfolio by ID, or None if it does not exist."""
        try:
            doc = self.db.collection(PORTFOLIOS).document(portfolio_id).get()
        except Exception as e:
            logger.error(f"[{portfolio_id}] Error loading portfolio: {e}")
            raise PersistenceError(f"Failed to load portfolio {portfolio_id}: {e}")
        if not doc.exists:
            return None
        return PortfolioRecord.from_dict(portfolio_id, doc.to_dict())

    def get_positions(self, portfolio_id: str) -> List[PositionRecord]:
        """Get current positions for a portfolio."""
        try:
            docs = self._where(POSITIONS, 'portfolio_id', portfolio_id).stream()
            return [PositionRecord.from_dict(doc.to_dict()) for doc in docs]
        except Exception as e:
            logger.error(f"[{portfolio_id}] Error loading positions: {e}")
            raise PersistenceError(f"Failed to load positions for {portfolio_id}: {e}")

    def get_all_portfolio_ids(self) -> List[str]:
        """Get IDs of every stored portfolio."""
        try:
            return [doc.id for doc in self.db.collection(PORTFOLIOS).stream()]
        except Exception as e:
            logger.error(f"Error listing portfolios: {e}")
            raise PersistenceError(f"Failed to list portfolios: {e}")

    def create_portfolio_with_positions(
        self,
        portfolio: PortfolioRecord,
        positions: List[PositionRecord],
        nav_entry: NAVHistoryRecord,
    ) -> None:
        """Write portfolio, positions and initial NAV entry in one batch."""
        batch = self.db.batch()
        batch.set(self.db.collection(PORTFOLIOS).document(portfolio.id), portfolio.to_dict())
        for position in positions:
            batch.set(self.db.collection(POSITIONS).document(position.doc_id), position.to_dict())
        batch.set(self.db.collection(NAV_HISTORY).document(nav_entry.doc_id), nav_entry.to_dict())
        self._commit(batch, portfolio.id, "create portfolio")
        logger.info(f"[{portfolio.id}] Created portfolio with {len(positions)} positions")

    def replace_positions(
        self,
        portfolio: PortfolioRecord,
        positions: List[PositionRecord],
        nav_entry: NAVHistoryRecord,
    ) -> None:
        """Replace all positions, update the portfolio and append a NAV entry in one batch."""
        try:
            existing = list(self._where(POSITIONS, 'portfolio_id', portfolio.id).stream())
        except Exception as e:
            logger.error(f"[{portfolio.id}] Error loading positions for replacement: {e}")
            raise PersistenceError(f"Failed to load positions for {portfolio.id}: {e}")

        new_ids = {p.doc_id for p in positions}
        batch = self.db.batch()
        for doc in existing:
            if doc.id not in new_ids:
                batch.delete(self.db.collection(POSITIONS).document(doc.id))
        for position in positions:
            batch.set(self.db.collection(POSITIONS).document(position.doc_id), position.to_dict())
        batch.set(self.db.collection(PORTFOLIOS).document(portfolio.id), portfolio.to_dict())
        batch.set(self.db.collection(NAV_HISTORY).document(nav_entry.doc_id), nav_entry.to_dict())
        self._commit(batch, portfolio.id, "replace positions")
        logger.info(f"[{portfolio.id}] Replaced {len(existing)} positions with {len(positions)}")

    def append_nav_history(self, entry: NAVHistoryRecord) -> None:
        """Append one NAV entry."""
        try:
            self.db.collection(NAV_HISTORY).document(entry.doc_id).set(entry.to_dict())
        except Exception as e:
            logger.error(f"[{entry.portfolio_id}] Error appending NAV history: {e}")
            raise PersistenceError(f"Failed to append NAV history for {entry.portfolio_id}: {e}")

    def read_nav_history(
        self,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[NAVHistoryRecord]:
        """Get NAV entries for a portfolio ordered by timestamp."""
        try:
            docs = self._where(NAV_HISTORY, 'portfolio_id', portfolio_id).stream()
            entries = [NAVHistoryRecord.from_dict(doc.to_dict()) for doc in docs]
        except Exception as e:
            logger.error(f"[{portfolio_id}] Error reading NAV history: {e}")
            raise PersistenceError(f"Failed to read NAV history for {portfolio_id}: {e}")

        if start is not None:
            start = as_utc(start)
            entries = [e for e in entries if e.timestamp >= start]
        if end is not None:
            end = as_utc(end)
            entries = [e for e in entries if e.timestamp <= end]
        entries.sort(key=lambda e: e.timestamp)
        return entries

    def delete_portfolio(self, portfolio_id: str) -> None:
        """Delete a portfolio, its positions and its NAV history."""
        try:
            positions = list(self._where(POSITIONS, 'portfolio_id', portfolio_id).stream())
            history = list(self._where(NAV_HISTORY, 'portfolio_id', portfolio_id).stream())
        except Exception as e:
            logger.error(f"[{portfolio_id}] Error loading portfolio data for deletion: {e}")
            raise PersistenceError(f"Failed to delete portfolio {portfolio_id}: {e}")

        batch = self.db.batch()
        for doc in positions:
            batch.delete(self.db.collection(POSITIONS).document(doc.id))
        for doc in history:
            batch.delete(self.db.collection(NAV_HISTORY).document(doc.id))
        batch.delete(self.db.collection(PORTFOLIOS).document(portfolio_id))
        self._commit(batch, portfolio_id, "delete portfolio")
        logger.info(f"[{portfolio_id}] Deleted portfolio ({len(positions)} positions, {len(history)} NAV entries)")

    def _commit(self, batch, portfolio_id: str, action: str) -> None:
        try:
            batch.commit()
        except Exception as e:
            logger.error(f"[{portfolio_id}] Failed to {action}: {e}")
            raise PersistenceError(f"Failed to {action} for {portfolio_id}: {e}")
