"""Store contract for entities and notifications, plus a JSON-file implementation."""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from renewals.clock import SystemClock
from renewals.entity import Entity
from renewals.errors import TransportError
from renewals.notification import (
    Notification,
    NotificationAction,
    NotificationDraft,
)

logger = logging.getLogger(__name__)


@dataclass
class StoreResponse:
    """Success flag, optional message and payload from a store call."""

    success: bool
    message: str = ""
    data: Any = None


class RenewalStore(ABC):
    """What the engine needs from persistence.

    Implementations raise TransportError when the store cannot be reached or
    answers with something unreadable, and return ``success=False`` when the
    store refuses an operation.
    """

    @abstractmethod
    def fetch_entities(self) -> StoreResponse:
        """``data`` is a list of Entity."""

    @abstractmethod
    def fetch_notifications(self, include_history: bool = False) -> StoreResponse:
        """``data`` is the active list, or the archived list when ``include_history``."""

    @abstractmethod
    def create_notification(self, draft: NotificationDraft) -> StoreResponse:
        """``data`` is the id of the stored notification."""

    @abstractmethod
    def update_notification_state(self, notification_id: str, action: NotificationAction) -> StoreResponse:
        ...

    @abstractmethod
    def delete_history_item(self, notification_id: str) -> StoreResponse:
        ...

    @abstractmethod
    def clear_history(self) -> StoreResponse:
        ...


class JsonFileStore(RenewalStore):
    """Entities and notifications persisted to a single JSON file.

    With ``unique_unresolved`` (the default) creating an action-needed
    notification for an entity that already has an unresolved one returns
    the existing id instead of inserting a duplicate.
    """

    def __init__(self, path: str, clock=None, unique_unresolved: bool = True):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or SystemClock()
        self._unique_unresolved = unique_unresolved

    # ---- Entities ----

    def fetch_entities(self) -> StoreResponse:
        data = self._load()
        return StoreResponse(True, data=[Entity.from_dict(e) for e in data["entities"]])

    def add_entity(self, entity: Entity) -> Entity:
        data = self._load()
        data["entities"] = [e for e in data["entities"] if str(e.get("id")) != entity.id]
        data["entities"].append(entity.to_dict())
        self._save(data)
        return entity

    def remove_entity(self, entity_id: str) -> bool:
        data = self._load()
        before = len(data["entities"])
        data["entities"] = [e for e in data["entities"] if str(e.get("id")) != entity_id]
        if len(data["entities"]) == before:
            return False
        self._save(data)
        return True

    # ---- Notifications ----

    def fetch_notifications(self, include_history: bool = False) -> StoreResponse:
        records = [Notification.from_dict(n) for n in self._load()["notifications"]]
        selected = [n for n in records if n.is_archived == include_history]
        selected.sort(key=lambda n: n.created_at, reverse=True)
        return StoreResponse(True, data=selected)

    def create_notification(self, draft: NotificationDraft) -> StoreResponse:
        data = self._load()
        records = [Notification.from_dict(n) for n in data["notifications"]]

        key = draft.dedup_key
        if self._unique_unresolved and key is not None:
            for existing in records:
                if existing.dedup_key == key and existing.is_unresolved:
                    logger.info(
                        "Unresolved %s notification %s already exists for entity %s",
                        draft.type.value, existing.id, draft.entity_id,
                    )
                    return StoreResponse(True, "Notification already exists", existing.id)

        notification = Notification.from_draft(
            uuid.uuid4().hex[:12], draft, created_at=self._clock.now()
        )
        data["notifications"].append(notification.to_dict())
        self._save(data)
        return StoreResponse(True, "Notification created", notification.id)

    def update_notification_state(self, notification_id: str, action: NotificationAction) -> StoreResponse:
        action = NotificationAction(action)
        data = self._load()
        for idx, raw in enumerate(data["notifications"]):
            if str(raw.get("id")) != str(notification_id):
                continue
            notification = Notification.from_dict(raw)
            if notification.is_archived:
                return StoreResponse(False, f"Notification {notification_id} is archived")

            now = self._clock.now()
            if action == NotificationAction.READ:
                notification = notification.mark_read()
            elif action == NotificationAction.ACTED_UPON:
                notification = notification.mark_acted_upon(now)
            else:
                notification = notification.dismiss(now)

            data["notifications"][idx] = notification.to_dict()
            self._save(data)
            return StoreResponse(True, f"Notification {action.value}", notification)
        return StoreResponse(False, f"Notification {notification_id} not found")

    def delete_history_item(self, notification_id: str) -> StoreResponse:
        data = self._load()
        kept = [
            n for n in data["notifications"]
            if not (str(n.get("id")) == str(notification_id) and n.get("archived_at"))
        ]
        if len(kept) == len(data["notifications"]):
            return StoreResponse(False, f"History item {notification_id} not found")
        data["notifications"] = kept
        self._save(data)
        return StoreResponse(True, "History item deleted")

    def clear_history(self) -> StoreResponse:
        data = self._load()
        kept = [n for n in data["notifications"] if not n.get("archived_at")]
        removed = len(data["notifications"]) - len(kept)
        data["notifications"] = kept
        self._save(data)
        return StoreResponse(True, f"Cleared {removed} history item(s)", removed)

    # ---- Persistence ----

    def _load(self) -> dict:
        empty = {"entities": [], "notifications": []}
        if not self._path.exists():
            return empty
        try:
            text = self._path.read_text()
        except OSError as e:
            raise TransportError(f"Store file {self._path} is unreadable: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            self._quarantine()
            return empty
        data.setdefault("entities", [])
        data.setdefault("notifications", [])
        return data

    def _quarantine(self) -> None:
        """Move a corrupt store file aside so the next save cannot overwrite it."""
        backup = self._path.with_name(
            f"{self._path.name}.corrupt-{self._clock.now():%Y%m%d%H%M%S}"
        )
        try:
            self._path.replace(backup)
        except OSError as e:
            raise TransportError(f"Store file {self._path} is corrupt and could not be moved") from e
        logger.error("Store file %s is corrupt, moved to %s and starting empty", self._path, backup)

    def _save(self, data: dict) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str))
        tmp.replace(self._path)


def build_store(backend: str, path: Optional[str] = None, base_url: str = "", timeout: float = 30, clock=None) -> RenewalStore:
    """Construct the store selected by configuration."""
    if backend == "http":
        from renewals.http_store import HttpStore
        return HttpStore(base_url, timeout=timeout)
    if backend == "file":
        return JsonFileStore(path, clock=clock)
    raise ValueError(f"Unknown store backend: {backend}")
