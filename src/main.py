"""Main application entry point."""

import logging
import signal
import sys
import threading

from .config import get_config
from .allocation.engine import AllocationEngine
from .allocation.models import AllocationConstraints
from .market_data import create_price_source
from .portfolio.nav_scheduler import NAVScheduler
from .portfolio.portfolio_service import PortfolioService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class PortfolioApp:
    """Wires configuration, price source, storage, services and the NAV scheduler."""

    def __init__(self):
        """Initialize the application."""
        self.config = get_config()
        logging.getLogger().setLevel(self.config.log_level)
        self.price_source = None
        self.persistence_manager = None
        self.engine = None
        self.portfolio_service = None
        self.nav_scheduler = None
        self._stop_event = threading.Event()

        # Setup signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}. Shutting down...")
        self.shutdown()
        sys.exit(0)

    def initialize(self):
        """Initialize all components."""
        logger.info("Initializing portfolio allocation engine...")

        try:
            self.price_source = create_price_source(self.config.market_data)
            logger.info(f"Initialized price source: {self.config.market_data.provider}")
        except Exception as e:
            logger.error(f"Error initializing price source: {e}")
            raise

        if not self.config.persistence.enabled or not self.config.persistence.is_configured():
            raise ValueError(
                "Persistence is required: set FIREBASE_PROJECT_ID and FIREBASE_CREDENTIALS_PATH "
                "or FIREBASE_CREDENTIALS_JSON"
            )

        try:
            from .persistence.persistence_manager import PersistenceManager
            self.persistence_manager = PersistenceManager(
                project_id=self.config.persistence.project_id,
                credentials_path=self.config.persistence.credentials_path,
                credentials_json=self.config.persistence.credentials_json,
            )
            logger.info("Initialized persistence manager (Firebase Firestore)")
        except Exception as e:
            logger.error(f"Error initializing persistence manager: {e}")
            raise

        self.engine = AllocationEngine(
            strategy_repository=self.persistence_manager,
            price_source=self.price_source,
            price_timeout_seconds=self.config.market_data.price_timeout_seconds,
            price_workers=self.config.market_data.price_workers,
        )
        self.portfolio_service = PortfolioService(
            engine=self.engine,
            portfolio_repository=self.persistence_manager,
            default_constraints=AllocationConstraints(
                max_allocation_per_stock=self.config.allocation.max_allocation_per_stock,
                min_allocation_amount=self.config.allocation.min_allocation_amount,
            ),
        )
        logger.info("Initialized allocation engine and portfolio service")

        if self.config.scheduler.enabled:
            self.nav_scheduler = NAVScheduler(
                portfolio_service=self.portfolio_service,
                portfolio_repository=self.persistence_manager,
                cron_schedule=self.config.scheduler.cron_schedule,
                timezone=self.config.scheduler.timezone,
                max_retries=self.config.scheduler.max_retries,
                retry_delay_seconds=self.config.scheduler.retry_delay,
                batch_size=self.config.scheduler.batch_size,
            )
        else:
            logger.info("NAV scheduler disabled")

    def run(self):
        """Run the application until a shutdown signal arrives."""
        self.initialize()

        logger.info("=" * 60)
        logger.info("Portfolio Allocation Engine Started")
        logger.info(f"Price provider: {self.config.market_data.provider}")
        logger.info(
            f"Default constraints: max {self.config.allocation.max_allocation_per_stock}% per stock, "
            f"min {self.config.allocation.min_allocation_amount} per stock"
        )
        logger.info(f"NAV scheduler: {self.config.scheduler.cron_schedule if self.nav_scheduler else 'Disabled'}")
        logger.info("=" * 60)

        if self.nav_scheduler:
            self.nav_scheduler.start()

        try:
            self._stop_event.wait()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
            self.shutdown()

    def shutdown(self):
        """Shutdown the application."""
        logger.info("Shutting down portfolio allocation engine...")
        if self.nav_scheduler:
            self.nav_scheduler.stop()
        if self.engine:
            self.engine.shutdown()
        self._stop_event.set()


def main():
    """Main entry point."""
    app = PortfolioApp()
    app.run()


if __name__ == "__main__":
    main()
