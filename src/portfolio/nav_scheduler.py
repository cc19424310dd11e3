"""Periodic NAV updates for every stored portfolio using APScheduler."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..allocation.errors import PortfolioNotFoundError
from ..persistence.repository import PortfolioRepository
from .portfolio_service import PortfolioService

logger = logging.getLogger(__name__)

JOB_ID = "nav_update"


@dataclass
class SchedulerMetrics:
    """Counters for the NAV update job."""

    running: bool = False
    last_update_time: Optional[datetime] = None
    success_count: int = 0
    error_count: int = 0
    total_portfolios: int = 0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "last_update_time": self.last_update_time.isoformat() if self.last_update_time else None,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_portfolios": self.total_portfolios,
        }


@dataclass
class UpdateRunSummary:
    """Outcome of one pass over all portfolios."""

    started_at: datetime
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class NAVScheduler:
    """
    Calls PortfolioService.update_nav for every portfolio on a cron schedule.

    Portfolios are processed in batches on a thread pool. Each update is retried
    on failure; a failing portfolio never blocks the others.
    """

    def __init__(
        self,
        portfolio_service: PortfolioService,
        portfolio_repository: PortfolioRepository,
        cron_schedule: str = "*/15 * * * *",
        timezone: str = "America/New_York",
        max_retries: int = 3,
        retry_delay_seconds: float = 30.0,
        batch_size: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.portfolio_service = portfolio_service
        self.repository = portfolio_repository
        self.cron_schedule = cron_schedule
        self.timezone = pytz.timezone(timezone)
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.batch_size = max(1, batch_size)
        self._sleep = sleep
        self._metrics = SchedulerMetrics()
        self._metrics_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    def start(self) -> None:
        """Start the background scheduler."""
        if self.is_running():
            logger.warning("NAV scheduler already running")
            return

        self._scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
        self._scheduler.add_job(
            self.run_update,
            CronTrigger.from_crontab(self.cron_schedule, timezone=self.timezone),
            id=JOB_ID,
            name="Update portfolio NAV",
            replace_existing=True,
        )
        self._scheduler.start()
        with self._metrics_lock:
            self._metrics.running = True
        logger.info(f"NAV scheduler started with schedule '{self.cron_schedule}' ({self.timezone.zone})")

    def stop(self) -> None:
        """Stop the background scheduler."""
        if not self.is_running():
            return
        self._scheduler.shutdown(wait=True)
        self._scheduler = None
        with self._metrics_lock:
            self._metrics.running = False
        logger.info("NAV scheduler stopped")

    def is_running(self) -> bool:
        with self._metrics_lock:
            return self._metrics.running

    def get_metrics(self) -> SchedulerMetrics:
        with self._metrics_lock:
            return SchedulerMetrics(**vars(self._metrics))

    def next_run_time(self) -> Optional[datetime]:
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def force_update(self) -> UpdateRunSummary:
        """Run a full update pass immediately on the calling thread."""
        logger.info("Forced NAV update requested")
        return self.run_update()

    def update_single_portfolio(self, portfolio_id: str) -> bool:
        """Update one portfolio with retries. Returns True on success."""
        ok = self._update_with_retry(portfolio_id) is None
        self._record([portfolio_id] if ok else [], [] if ok else [portfolio_id])
        return ok

    def run_update(self) -> UpdateRunSummary:
        """Update every portfolio, batch by batch."""
        summary = UpdateRunSummary(started_at=datetime.now())
        if not self._run_lock.acquire(blocking=False):
            logger.warning("NAV update already in progress; skipping this run")
            return summary

        try:
            portfolio_ids = self.repository.get_all_portfolio_ids()
            logger.info(f"Starting NAV update for {len(portfolio_ids)} portfolios")
            with self._metrics_lock:
                self._metrics.total_portfolios = len(portfolio_ids)

            for start in range(0, len(portfolio_ids), self.batch_size):
                batch = portfolio_ids[start:start + self.batch_size]
                with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="nav-update") as executor:
                    errors = list(executor.map(self._update_with_retry, batch))
                for portfolio_id, error in zip(batch, errors):
                    if error is None:
                        summary.succeeded.append(portfolio_id)
                    else:
                        summary.failed[portfolio_id] = error

            self._record(summary.succeeded, list(summary.failed))
            logger.info(f"NAV update finished: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed")
            return summary
        except Exception as e:
            logger.error(f"NAV update run failed: {e}", exc_info=True)
            raise
        finally:
            self._run_lock.release()

    def _record(self, succeeded: List[str], failed: List[str]) -> None:
        with self._metrics_lock:
            self._metrics.success_count += len(succeeded)
            self._metrics.error_count += len(failed)
            self._metrics.last_update_time = datetime.now()

    def _update_with_retry(self, portfolio_id: str) -> Optional[str]:
        """Returns None on success, otherwise the last error message."""
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                self.portfolio_service.update_nav(portfolio_id)
                return None
            except PortfolioNotFoundError as e:
                logger.warning(f"[{portfolio_id}] Skipping NAV update: {e}")
                return str(e)
            except Exception as e:
                last_error = str(e)
                logger.warning(f"[{portfolio_id}] NAV update attempt {attempt}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries:
                    self._sleep(self.retry_delay_seconds)

        logger.error(f"[{portfolio_id}] NAV update failed after {self.max_retries} attempts: {last_error}")
        return last_error
