"""Tests for the background scheduler."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from renewals.store import JsonFileStore
from web import create_app
from web.scheduler import init_scheduler


class TestScheduler(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.store = JsonFileStore(os.path.join(self.tmpdir, "renewals.json"))

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_scheduler_not_started_in_testing_mode(self):
        """create_app checks TESTING before calling init_scheduler."""
        app = create_app(config={"TESTING": True}, store=self.store)
        self.assertFalse(app.extensions["renewals"].driver.running)

    def test_scheduler_disabled_by_config(self):
        with patch("web.scheduler.init_scheduler") as init:
            create_app(config={"SCHEDULER_ENABLED": False}, store=self.store)
        init.assert_not_called()

    def test_init_scheduler_starts_driver_once(self):
        app = create_app(config={"TESTING": True}, store=self.store)
        driver = app.extensions["renewals"].driver
        with patch.object(driver, "start") as start, patch("web.scheduler.atexit.register") as register:
            init_scheduler(app)
        start.assert_called_once()
        register.assert_called_once_with(driver.stop)


if __name__ == "__main__":
    unittest.main()
