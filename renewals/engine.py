"""
Notification engine - decides when an entity needs an alert and manages alert state.

An entity expiring within 7 days gets one action-needed notification. While
that notification is unresolved no other is created for the same entity;
once it is acted upon or dismissed a later evaluation may create a new one.

Usage:
    engine = NotificationEngine(store)
    engine.refresh(include_history=True)
    result = engine.evaluate(entities)
    engine.mark_acted_upon(result.data[0].id)
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from renewals.clock import SystemClock, as_utc
from renewals.entity import Entity
from renewals.errors import ConsistencyWarning, OperationResult, TransportError
from renewals.lifecycle import LifecycleState, classify, days_until_expiry
from renewals.notification import (
    Notification,
    NotificationAction,
    NotificationDraft,
    NotificationType,
)
from renewals.store import RenewalStore, StoreResponse

logger = logging.getLogger(__name__)

# How long a notification this engine created may stay missing from fetched
# snapshots before it stops counting for dedup.
PENDING_GRACE = timedelta(minutes=5)

Listener = Callable[[str, Optional[str]], None]


class NotificationEngine:
    """Holds the last-known-good notification lists and funnels every change
    through the store.

    Store failures never raise out of the engine: each operation returns an
    OperationResult and leaves the in-memory lists as they were.
    """

    def __init__(self, store: RenewalStore, clock=None):
        self._store = store
        self._clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._notifications: list[Notification] = []
        self._history: list[Notification] = []
        self._pending: dict[tuple[str, str], tuple[str, datetime]] = {}
        self._listeners: list[Listener] = []
        self.last_error: Optional[str] = None
        self.last_refreshed_at: Optional[datetime] = None

    # ---- Read model ----

    @property
    def notifications(self) -> list[Notification]:
        with self._lock:
            return list(self._notifications)

    @property
    def history(self) -> list[Notification]:
        with self._lock:
            return list(self._history)

    @property
    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._notifications if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        with self._lock:
            for n in self._notifications:
                if n.id == notification_id:
                    return n
        return None

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(event, notification_id)`` after each successful change."""
        self._listeners.append(listener)

    # ---- Fetch ----

    def refresh(self, include_history: bool = False) -> OperationResult:
        """Re-fetch active notifications, and history when asked."""
        with self._lock:
            result = self._fetch(history=False)
            if result.success and include_history:
                result = self._fetch(history=True)
            if result.success:
                self.last_refreshed_at = self._clock.now()
                self.last_error = None
            return result

    def _fetch(self, history: bool) -> OperationResult:
        label = "history" if history else "active notifications"
        response = self._call(self._store.fetch_notifications, history)
        if not response.success:
            return OperationResult.fail(f"Failed to fetch {label}: {response.message}")

        records = list(response.data or [])
        if history:
            self._history = records
        else:
            self._notifications = records
            for warning in self.find_duplicates(records):
                logger.warning("Consistency warning: %s", warning.message)
        self._reconcile_pending(records)
        return OperationResult.ok(f"Fetched {len(records)} {label}", records)

    # ---- Evaluation ----

    def evaluate(
        self,
        entities: Iterable[Entity],
        active_notifications: Optional[Iterable[Notification]] = None,
        now: Optional[datetime] = None,
        history: Optional[Iterable[Notification]] = None,
    ) -> OperationResult:
        """Create an action-needed notification for each entity expiring
        within 7 days that has no unresolved one yet.

        ``active_notifications`` is the snapshot to dedup against; the
        engine's own list and the notifications it created itself are
        always taken into account too, so repeated calls on a stale
        snapshot do not pile up duplicates. When ``history`` is given, a
        new alert after resolution also waits for the previous instance's
        repeat interval.

        ``result.data`` holds the notifications created.
        """
        now = as_utc(now) if now else self._clock.now()
        history = list(history) if history is not None else None

        with self._lock:
            self._expire_pending()
            open_keys = _open_keys(self._notifications)
            if active_notifications is not None:
                open_keys |= _open_keys(active_notifications)
            open_keys |= set(self._pending)

            created: list[Notification] = []
            errors: list[str] = []
            for entity in entities:
                if classify(entity.expiry_date, now) != LifecycleState.EXPIRING_7_DAYS:
                    continue
                key = (str(entity.id), NotificationType.ACTION_NEEDED.value)
                if key in open_keys:
                    continue
                if history is not None and not _repeat_due(key, history, now):
                    logger.debug("Repeat interval not reached for entity %s", entity.id)
                    continue

                result = self._create(_expiry_draft(entity, now), now)
                if result.success:
                    created.append(result.data)
                    open_keys.add(key)
                else:
                    errors.append(result.message)

        if created:
            logger.info("Created %d expiry notification(s)", len(created))
        if errors:
            return OperationResult(
                success=False,
                message=f"Created {len(created)} notification(s), {len(errors)} failed",
                data=created,
                errors=errors,
            )
        return OperationResult.ok(f"Created {len(created)} notification(s)", created)

    def add_notification(
        self,
        type: NotificationType = NotificationType.INFO,
        message: str = "",
        entity_id: Optional[str] = None,
        needs_action: bool = False,
        repeat: bool = False,
        repeat_interval_days: int = 1,
    ) -> OperationResult:
        """Create a notification directly.

        Entity-scoped action-needed notifications still honour dedup and
        return the existing record; everything else is always created.
        """
        draft = NotificationDraft(
            type=NotificationType(type),
            message=message,
            entity_id=str(entity_id) if entity_id is not None else None,
            needs_action=needs_action,
            repeat=repeat,
            repeat_interval_days=repeat_interval_days,
        )
        with self._lock:
            key = draft.dedup_key
            if key is not None:
                for n in self._notifications:
                    if n.dedup_key == key and n.is_unresolved:
                        return OperationResult.ok("Notification already exists", n)
            return self._create(draft, self._clock.now())

    def _create(self, draft: NotificationDraft, now: datetime) -> OperationResult:
        response = self._call(self._store.create_notification, draft)
        if not response.success:
            return OperationResult.fail(f"Failed to create notification: {response.message}")

        notification = Notification.from_draft(response.data, draft, created_at=now)
        if not any(n.id == notification.id for n in self._notifications):
            self._notifications.insert(0, notification)
        if draft.dedup_key is not None:
            self._pending[draft.dedup_key] = (notification.id, self._clock.now())
        self._emit("created", notification.id)
        return OperationResult.ok("Notification created", notification)

    # ---- State transitions ----

    def mark_read(self, notification_id: str) -> OperationResult:
        with self._lock:
            response = self._call(
                self._store.update_notification_state, notification_id, NotificationAction.READ
            )
            if not response.success:
                return OperationResult.fail(f"Failed to mark {notification_id} read: {response.message}")
            self._notifications = [
                n.mark_read() if n.id == notification_id else n for n in self._notifications
            ]
        self._emit("read", notification_id)
        return OperationResult.ok("Notification marked as read")

    def mark_all_read(self) -> OperationResult:
        """Mark every unread notification read, one by one.

        Not atomic: on partial failure some stay unread and the result
        lists what failed.
        """
        unread = [n.id for n in self.notifications if not n.read]
        failures = []
        for notification_id in unread:
            result = self.mark_read(notification_id)
            if not result.success:
                failures.append(result.message)

        marked = len(unread) - len(failures)
        message = f"Marked {marked}/{len(unread)} notification(s) as read"
        if failures:
            return OperationResult(success=False, message=message, data=marked, errors=failures)
        return OperationResult.ok(message, marked)

    def mark_acted_upon(self, notification_id: str) -> OperationResult:
        return self._archive(notification_id, NotificationAction.ACTED_UPON)

    def dismiss(self, notification_id: str) -> OperationResult:
        return self._archive(notification_id, NotificationAction.DISMISS)

    def _archive(self, notification_id: str, action: NotificationAction) -> OperationResult:
        with self._lock:
            response = self._call(self._store.update_notification_state, notification_id, action)
            if not response.success:
                return OperationResult.fail(
                    f"Failed to {action.value} {notification_id}: {response.message}"
                )

            now = self._clock.now()
            archived = None
            remaining = []
            for n in self._notifications:
                if n.id == notification_id:
                    archived = (
                        n.mark_acted_upon(now)
                        if action == NotificationAction.ACTED_UPON
                        else n.dismiss(now)
                    )
                else:
                    remaining.append(n)
            self._notifications = remaining
            if archived is not None:
                self._history.insert(0, archived)
            self._pending = {
                key: value for key, value in self._pending.items()
                if value[0] != notification_id
            }
        self._emit(action.value, notification_id)
        return OperationResult.ok(f"Notification {action.value}", archived)

    # ---- History ----

    def delete_history_item(self, notification_id: str) -> OperationResult:
        with self._lock:
            response = self._call(self._store.delete_history_item, notification_id)
            if not response.success:
                return OperationResult.fail(
                    f"Failed to delete history item {notification_id}: {response.message}"
                )
            self._history = [n for n in self._history if n.id != notification_id]
        self._emit("history_deleted", notification_id)
        return OperationResult.ok("History item deleted")

    def clear_history(self) -> OperationResult:
        with self._lock:
            response = self._call(self._store.clear_history)
            if not response.success:
                return OperationResult.fail(f"Failed to clear history: {response.message}")
            cleared = len(self._history)
            self._history = []
        self._emit("history_cleared", None)
        return OperationResult.ok("History cleared", cleared)

    # ---- Consistency ----

    def find_duplicates(
        self, notifications: Optional[Iterable[Notification]] = None
    ) -> list[ConsistencyWarning]:
        """Report entity/type pairs with more than one unresolved alert.

        Nothing is removed; closing the race needs a store-side constraint.
        """
        if notifications is None:
            notifications = self.notifications

        groups: dict[tuple[str, str], list[str]] = {}
        for n in notifications:
            if n.dedup_key is not None and n.is_unresolved:
                groups.setdefault(n.dedup_key, []).append(n.id)

        return [
            ConsistencyWarning(entity_id=key[0], notification_type=key[1], notification_ids=tuple(ids))
            for key, ids in groups.items()
            if len(ids) > 1
        ]

    # ---- Helpers ----

    def _call(self, func, *args):
        """Run a store call, turning TransportError into a failed response."""
        try:
            response = func(*args)
        except TransportError as exc:
            logger.error("Store unreachable: %s", exc)
            self.last_error = str(exc)
            return StoreResponse(False, str(exc))
        if not response.success:
            self.last_error = response.message
        return response

    def _reconcile_pending(self, fetched: list[Notification]) -> None:
        """Forget own creations once a fetched snapshot reflects them."""
        seen = {n.id for n in fetched}
        self._pending = {
            key: value for key, value in self._pending.items() if value[0] not in seen
        }

    def _expire_pending(self) -> None:
        cutoff = self._clock.now() - PENDING_GRACE
        self._pending = {
            key: value for key, value in self._pending.items() if value[1] > cutoff
        }

    def _emit(self, event: str, notification_id: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, notification_id)
            except Exception:
                logger.exception("Notification listener failed on %s", event)


def _open_keys(notifications: Iterable[Notification]) -> set[tuple[str, str]]:
    return {n.dedup_key for n in notifications if n.dedup_key is not None and n.is_unresolved}


def _repeat_due(key: tuple[str, str], history: list[Notification], now: datetime) -> bool:
    previous = [n for n in history if n.dedup_key == key]
    if not previous:
        return True
    last = max(previous, key=lambda n: n.created_at)
    if not last.repeat:
        return False
    return now - last.created_at >= timedelta(days=last.repeat_interval_days)


def _expiry_draft(entity: Entity, now: datetime) -> NotificationDraft:
    days = days_until_expiry(entity.expiry_date, now)
    unit = "day" if days == 1 else "days"
    return NotificationDraft(
        type=NotificationType.ACTION_NEEDED,
        message=f"{entity.name} is expiring in {days} {unit}",
        entity_id=str(entity.id),
        needs_action=True,
        repeat=True,
        repeat_interval_days=1,
    )
