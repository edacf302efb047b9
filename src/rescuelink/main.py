"""
RescueLink Main Application Entry Point

Loads configuration, sets up logging and storage, and runs the SOS
coordination engine behind its HTTP API until a shutdown signal arrives.
"""

import asyncio
import signal
import sys
from typing import Any, Dict, Optional

from rescuelink.core.config import ConfigurationManager
from rescuelink.core.database import DatabaseManager, initialize_database
from rescuelink.core.logging import initialize_logging, get_logger
from rescuelink.models.sos import CoordinationEvent
from rescuelink.services.sos import CoordinationService, StalenessMonitor
from rescuelink.services.web import SOSWebService


class RescueLinkApplication:
    """Main RescueLink application class"""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir

        # Core components
        self.config_manager: Optional[ConfigurationManager] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.coordinator: Optional[CoordinationService] = None
        self.staleness_monitor: Optional[StalenessMonitor] = None
        self.web_service: Optional[SOSWebService] = None
        self.logger = None

        # Application state
        self.running = False
        self.shutdown_event = asyncio.Event()

    async def initialize(self):
        """Initialize all application components"""
        # Initialize configuration
        self.config_manager = ConfigurationManager(self.config_dir)
        self.config_manager.load_config()

        # Initialize logging
        initialize_logging(self.config_manager.config)
        self.logger = get_logger('main')

        self.logger.info("RescueLink starting up...")
        self.logger.info(f"Version: {self.config_manager.get('app.version', '1.0.0')}")
        self.logger.info(f"Debug mode: {self.config_manager.get('app.debug', False)}")

        # Initialize database
        self.db_manager = initialize_database(
            self.config_manager.get('database.path'),
            self.config_manager.get('database.max_connections', 10)
        )
        self.logger.info(f"Database ready (schema version {self.db_manager.get_schema_version()})")

        # Coordination engine
        self.coordinator = CoordinationService(self.db_manager, self.config_manager.get_section('sos'))
        self.coordinator.subscribe(self._log_event)

        if self.config_manager.get('sos.escalation.enabled', True):
            self.staleness_monitor = StalenessMonitor(
                self.coordinator,
                check_interval_seconds=self.config_manager.get('sos.escalation.check_interval_seconds', 30)
            )

        if self.config_manager.get('web.enabled', True):
            web_config = dict(self.config_manager.get_section('web'))
            web_config.setdefault('debug', self.config_manager.get('app.debug', False))
            self.web_service = SOSWebService(self.coordinator, web_config)

    def _log_event(self, event: CoordinationEvent):
        """Default subscriber until a push notifier is attached"""
        self.logger.info(f"Event {event.event_type.value} for signal {event.signal_id}")

    async def start(self):
        """Start the application"""
        await self.initialize()

        self.running = True
        self.logger.info("RescueLink is now running")

        # Set up signal handlers
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            if self.staleness_monitor:
                await self.staleness_monitor.start()

            if self.web_service and not await self.web_service.start():
                raise RuntimeError("SOS API failed to start")

            # Wait for shutdown signal
            await self.shutdown_event.wait()
            self.logger.info("Shutdown signal received")

        except Exception as e:
            self.logger.error(f"Application error: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}")
        self.shutdown_event.set()

    async def shutdown(self):
        """Shutdown the application gracefully"""
        if not self.running:
            return

        self.logger.info("Shutting down RescueLink...")
        self.running = False

        if self.web_service:
            await self.web_service.stop()

        if self.staleness_monitor:
            await self.staleness_monitor.stop()

        # Close database connections
        if self.db_manager:
            self.db_manager.close()

        self.logger.info("RescueLink shutdown complete")

    def get_system_status(self) -> Dict[str, Any]:
        """Get application status"""
        status = {
            'running': self.running,
            'database': {'connected': self.db_manager is not None},
            'escalation_monitor': bool(self.staleness_monitor and self.staleness_monitor.running)
        }

        if self.coordinator:
            status['coordination'] = self.coordinator.get_service_status()

        return status


async def run():
    """Run the application until shutdown"""
    app = RescueLinkApplication()
    await app.start()


def main():
    """Console entry point"""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nApplication interrupted")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
