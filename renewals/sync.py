"""Sync driver - polls the store and feeds the notification engine on a schedule."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from renewals.clock import SystemClock
from renewals.engine import NotificationEngine
from renewals.entity import Entity
from renewals.errors import TransportError
from renewals.lifecycle import Buckets, categorize
from renewals.notification import Notification
from renewals.store import RenewalStore

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "renewals_sync"
REFRESH_JOB_ID = "renewals_notification_refresh"


@dataclass
class SyncReport:
    """What one sync pass saw and did."""

    synced_at: datetime
    buckets: Buckets
    created: list[Notification] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "synced_at": self.synced_at.isoformat(),
            "success": self.success,
            "counts": self.buckets.counts(),
            "rejected": len(self.buckets.rejected),
            "created": [n.to_dict() for n in self.created],
            "errors": self.errors,
        }


class SyncDriver:
    """Refresh entities and notifications, categorize, and evaluate.

    Usage:
        driver = SyncDriver(store, engine, interval_seconds=60)
        driver.start()        # background polling
        ...
        driver.stop()         # on teardown

    Passes are serialized with a lock so two evaluations never race inside
    one process.
    """

    def __init__(
        self,
        store: RenewalStore,
        engine: NotificationEngine,
        clock=None,
        interval_seconds: int = 60,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self._store = store
        self._engine = engine
        self._clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self._scheduler = scheduler or BackgroundScheduler(daemon=True)
        self._lock = threading.Lock()
        self._entities: list[Entity] = []
        self.buckets = Buckets()
        self.last_report: Optional[SyncReport] = None

        engine.subscribe(self._on_engine_change)

    @property
    def entities(self) -> list[Entity]:
        return list(self._entities)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    # ---- Passes ----

    def run_once(self) -> SyncReport:
        """One full pass: fetch, categorize, evaluate."""
        with self._lock:
            errors = []

            entity_error = self.refresh_entities()
            if entity_error:
                errors.append(entity_error)

            refreshed = self._engine.refresh(include_history=True)
            if not refreshed.success:
                errors.append(refreshed.message)

            now = self._clock.now()
            self.buckets = categorize(self._entities, now)
            evaluation = self._engine.evaluate(
                self._entities, now=now, history=self._engine.history,
            )
            errors.extend(evaluation.errors)
            created = list(evaluation.data or [])
            if created:
                self._engine.refresh()

            report = SyncReport(synced_at=now, buckets=self.buckets, created=created, errors=errors)
            self.last_report = report

        if errors:
            logger.warning("Sync finished with %d error(s): %s", len(errors), "; ".join(errors))
        else:
            logger.info(
                "Sync complete: %s, %d notification(s) created",
                report.buckets.counts(), len(created),
            )
        return report

    def refresh_entities(self) -> Optional[str]:
        """Fetch entities; on failure keep the last list and return the error."""
        try:
            response = self._store.fetch_entities()
        except TransportError as exc:
            logger.error("Could not fetch entities, keeping last known list: %s", exc)
            return f"Failed to fetch entities: {exc}"
        if not response.success:
            return f"Failed to fetch entities: {response.message}"
        self._entities = list(response.data or [])
        return None

    def request_refresh(self) -> None:
        """Re-fetch notifications soon; coalesced into one job while running."""
        if self._scheduler.running:
            self._scheduler.add_job(
                func=self._refresh_notifications,
                id=REFRESH_JOB_ID,
                replace_existing=True,
            )
            return
        self._refresh_notifications()

    def _refresh_notifications(self) -> None:
        result = self._engine.refresh(include_history=True)
        if not result.success:
            logger.warning("On-demand refresh failed: %s", result.message)

    def _on_engine_change(self, event: str, notification_id: Optional[str]) -> None:
        # Skipped while a pass runs; the pass or the next poll picks it up.
        if self._lock.locked():
            return
        logger.debug("Engine change %s (%s), refreshing", event, notification_id)
        self.request_refresh()

    # ---- Scheduling ----

    def start(self) -> None:
        """Start polling every ``interval_seconds``. Safe to call twice."""
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            func=self._scheduled_pass,
            trigger="interval",
            seconds=self.interval_seconds,
            id=SYNC_JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Sync driver started: every %d second(s)", self.interval_seconds)

    def stop(self) -> None:
        """Stop polling and release the scheduler thread."""
        if not self._scheduler.running:
            return
        for job_id in (SYNC_JOB_ID, REFRESH_JOB_ID):
            if self._scheduler.get_job(job_id):
                self._scheduler.remove_job(job_id)
        self._scheduler.shutdown(wait=False)
        logger.info("Sync driver stopped")

    def _scheduled_pass(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Scheduled sync pass failed")
