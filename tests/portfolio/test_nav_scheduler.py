"""Tests for NAVScheduler."""

import pytest
import pytz
from unittest.mock import Mock

from src.allocation.errors import PersistenceError, PortfolioNotFoundError, PriceServiceError
from src.portfolio.nav_scheduler import NAVScheduler
from src.portfolio.portfolio_service import PortfolioMeta


@pytest.fixture
def mock_service():
    service = Mock()
    service.update_nav.return_value = None
    return service


@pytest.fixture
def mock_repository():
    repository = Mock()
    repository.get_all_portfolio_ids.return_value = ["p1", "p2", "p3"]
    return repository


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def scheduler(mock_service, mock_repository, sleeps):
    scheduler = NAVScheduler(
        portfolio_service=mock_service,
        portfolio_repository=mock_repository,
        max_retries=3,
        retry_delay_seconds=5,
        batch_size=2,
        sleep=sleeps.append,
    )
    yield scheduler
    scheduler.stop()


class TestRunUpdate:
    """Tests for a full update pass."""

    def test_updates_every_portfolio(self, scheduler, mock_service):
        summary = scheduler.run_update()

        assert sorted(summary.succeeded) == ["p1", "p2", "p3"]
        assert summary.failed == {}
        assert mock_service.update_nav.call_count == 3

    def test_failure_is_isolated(self, scheduler, mock_service):
        """One failing portfolio does not stop the others."""
        def update(portfolio_id):
            if portfolio_id == "p2":
                raise PersistenceError("write failed")

        mock_service.update_nav.side_effect = update

        summary = scheduler.run_update()

        assert sorted(summary.succeeded) == ["p1", "p3"]
        assert "p2" in summary.failed
        assert "write failed" in summary.failed["p2"]

    def test_retries_with_delay(self, scheduler, mock_service, mock_repository, sleeps):
        """A transient failure is retried after the configured delay."""
        mock_repository.get_all_portfolio_ids.return_value = ["p1"]
        mock_service.update_nav.side_effect = [PriceServiceError("timeout"), None]

        summary = scheduler.run_update()

        assert summary.succeeded == ["p1"]
        assert mock_service.update_nav.call_count == 2
        assert sleeps == [5]

    def test_gives_up_after_max_retries(self, scheduler, mock_service, mock_repository, sleeps):
        mock_repository.get_all_portfolio_ids.return_value = ["p1"]
        mock_service.update_nav.side_effect = PriceServiceError("down")

        summary = scheduler.run_update()

        assert "p1" in summary.failed
        assert mock_service.update_nav.call_count == 3
        assert sleeps == [5, 5]

    def test_missing_portfolio_not_retried(self, scheduler, mock_service, mock_repository, sleeps):
        mock_repository.get_all_portfolio_ids.return_value = ["gone"]
        mock_service.update_nav.side_effect = PortfolioNotFoundError("gone")

        summary = scheduler.run_update()

        assert "gone" in summary.failed
        assert mock_service.update_nav.call_count == 1
        assert sleeps == []

    def test_metrics(self, scheduler, mock_service):
        def update(portfolio_id):
            if portfolio_id == "p3":
                raise PersistenceError("write failed")

        mock_service.update_nav.side_effect = update

        scheduler.run_update()
        metrics = scheduler.get_metrics()

        assert metrics.success_count == 2
        assert metrics.error_count == 1
        assert metrics.total_portfolios == 3
        assert metrics.last_update_time is not None
        assert metrics.to_dict()["running"] is False

    def test_metrics_are_a_copy(self, scheduler):
        metrics = scheduler.get_metrics()
        metrics.success_count = 99

        assert scheduler.get_metrics().success_count == 0

    def test_overlapping_run_skipped(self, scheduler, mock_service):
        scheduler._run_lock.acquire()
        try:
            summary = scheduler.run_update()
        finally:
            scheduler._run_lock.release()

        assert summary.total == 0
        mock_service.update_nav.assert_not_called()

    def test_force_update(self, scheduler, mock_service):
        summary = scheduler.force_update()

        assert summary.total == 3

    def test_update_single_portfolio(self, scheduler, mock_service):
        assert scheduler.update_single_portfolio("p1") is True
        mock_service.update_nav.assert_called_once_with("p1")
        assert scheduler.get_metrics().success_count == 1


class TestLifecycle:
    """Tests for starting and stopping the background scheduler."""

    def test_start_and_stop(self, scheduler):
        scheduler.start()

        assert scheduler.is_running() is True
        assert scheduler.next_run_time() is not None

        scheduler.stop()

        assert scheduler.is_running() is False
        assert scheduler.next_run_time() is None

    def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        first = scheduler._scheduler

        scheduler.start()

        assert scheduler._scheduler is first

    def test_invalid_timezone(self, mock_service, mock_repository):
        with pytest.raises(pytz.UnknownTimeZoneError):
            NAVScheduler(mock_service, mock_repository, timezone="Not/AZone")


class TestWithRealService:
    """Scheduler driving a real PortfolioService."""

    def test_appends_nav_for_each_portfolio(self, service, repository, make_strategy, make_stock):
        make_strategy("s1", "percent", 100, [make_stock("msft", "MSFT"), make_stock("nvda", "NVDA"), make_stock("amzn", "AMZN")])
        for pid in ("a", "b"):
            service.commit(["s1"], "9000", None, PortfolioMeta(user_id="user-1", name=pid, portfolio_id=pid))
        scheduler = NAVScheduler(service, repository, sleep=lambda seconds: None)

        summary = scheduler.run_update()

        assert sorted(summary.succeeded) == ["a", "b"]
        assert len(repository.nav_history["a"]) == 2
        assert len(repository.nav_history["b"]) == 2
