"""Main application - watches the consultation queues and sends position emails."""
import signal
import sys
import time

from consultation_queue.logging_conf import logger
from consultation_queue import settings
from consultation_queue.db import Database
from consultation_queue.change_feed import ChangeFeed
from consultation_queue.notifications import EmailDispatcher
from consultation_queue.position_monitor import PositionMonitor
from consultation_queue.queue.models import QueueType
from consultation_queue.queue.service import QueueService


class Application:
    """Wires the store, change feed, dispatcher and position monitor together."""

    def __init__(self):
        self.db = Database()
        self.dispatcher = EmailDispatcher()
        self.service = QueueService(self.db, self.dispatcher)
        self.feed = ChangeFeed(self.db)
        self.monitor = PositionMonitor(self.service, self.feed)
        self.running = False

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Consultation Queue Monitor")
        logger.info("=" * 50)
        logger.info(f"Email function: {settings.EMAIL_FUNCTION_URL}")
        logger.info(f"Reconcile interval: {settings.RECONCILE_INTERVAL or 'disabled'}")
        logger.info("=" * 50)

        settings.validate_config()
        self.running = True
        self.monitor.start()
        logger.info("Started - watching for queue changes")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        self.monitor.stop()
        self.feed.stop()
        self.db.close()
        logger.info("Stopped")

    def run(self):
        """Main loop."""
        self.start()

        # Bring approved positions back in line after downtime
        self.reconcile()
        last_reconcile = time.monotonic()

        while self.running:
            try:
                time.sleep(1)
                interval = settings.RECONCILE_INTERVAL
                if interval and time.monotonic() - last_reconcile >= interval:
                    self.reconcile()
                    last_reconcile = time.monotonic()

            except KeyboardInterrupt:
                break
            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                time.sleep(5)

        self.stop()

    def reconcile(self):
        for queue_type in QueueType:
            result = self.monitor.trigger_position_update(queue_type)
            if not result.success:
                logger.warning(f"Reconcile of {queue_type.value} queue failed: {result.error}")


def main():
    """Entry point."""
    app = Application()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
