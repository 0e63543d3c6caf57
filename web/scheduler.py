"""Background polling for the web dashboard."""

import atexit
import logging

logger = logging.getLogger(__name__)


def init_scheduler(app):
    """Start the app's sync driver and stop it when the process exits."""
    driver = app.extensions["renewals"].driver
    if driver.running:
        return

    driver.start()
    atexit.register(driver.stop)
    logger.info("Scheduler started: sync every %d second(s)", driver.interval_seconds)
