"""Store client for the remote PHP backend.

Every endpoint answers with an envelope::

    {"status": "success" | "error", "message": "...", "data": [...]}

Creation responses carry the new id in ``notification_id``.
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import replace
from typing import Optional

from renewals.entity import Entity, EntityKind
from renewals.errors import TransportError
from renewals.notification import (
    ArchiveReason,
    Notification,
    NotificationAction,
    NotificationDraft,
)
from renewals.store import RenewalStore, StoreResponse

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = {
    "entities": "getdomains.php",
    "fetch": "getNotifications.php",
    "create": "updateNotification.php",
    "mark": "markNotification.php",
    "delete_history": "deleteHistoryItem.php",
    "clear_history": "clearHistory.php",
}


class HttpStore(RenewalStore):
    """RenewalStore over HTTP/JSON using the backend's PHP endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        endpoints: Optional[dict] = None,
        entity_kind: EntityKind = EntityKind.DOMAIN,
    ):
        if not base_url:
            raise ValueError("HttpStore needs a base URL")
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.endpoints = {**DEFAULT_ENDPOINTS, **(endpoints or {})}
        self.entity_kind = entity_kind

    def fetch_entities(self) -> StoreResponse:
        envelope = self._request("GET", "entities")
        if not _is_success(envelope):
            return _failure(envelope)
        entities = _decode(
            "entities",
            envelope,
            lambda r: Entity.from_dict(r, kind=self.entity_kind),
        )
        return StoreResponse(True, envelope.get("message", ""), entities)

    def fetch_notifications(self, include_history: bool = False) -> StoreResponse:
        envelope = self._request(
            "GET", "fetch", params={"history": 1 if include_history else 0}
        )
        if not _is_success(envelope):
            return _failure(envelope)
        records = _decode("notifications", envelope, Notification.from_dict)
        if include_history:
            records = [_as_archived(n) for n in records]
        return StoreResponse(True, envelope.get("message", ""), records)

    def create_notification(self, draft: NotificationDraft) -> StoreResponse:
        envelope = self._request("POST", "create", body={
            "type": draft.type.value,
            "message": draft.message,
            "domain_id": draft.entity_id,
            "needs_action": 1 if draft.needs_action else 0,
            "repeat": draft.repeat,
            "days_until_repeat": draft.repeat_interval_days,
        })
        if not _is_success(envelope):
            return _failure(envelope)
        notification_id = envelope.get("notification_id")
        if notification_id is None:
            raise TransportError("Create response is missing notification_id")
        return StoreResponse(True, envelope.get("message", ""), str(notification_id))

    def update_notification_state(self, notification_id: str, action: NotificationAction) -> StoreResponse:
        envelope = self._request("POST", "mark", body={
            "notification_id": notification_id,
            "action": NotificationAction(action).value,
        })
        if not _is_success(envelope):
            return _failure(envelope)
        return StoreResponse(True, envelope.get("message", ""))

    def delete_history_item(self, notification_id: str) -> StoreResponse:
        envelope = self._request("POST", "delete_history", body={"notification_id": notification_id})
        if not _is_success(envelope):
            return _failure(envelope)
        return StoreResponse(True, envelope.get("message", ""))

    def clear_history(self) -> StoreResponse:
        envelope = self._request("POST", "clear_history", body={})
        if not _is_success(envelope):
            return _failure(envelope)
        return StoreResponse(True, envelope.get("message", ""))

    # ---- HTTP ----

    def _request(self, method: str, endpoint: str, params: Optional[dict] = None, body: Optional[dict] = None) -> dict:
        url = urllib.parse.urljoin(self.base_url, self.endpoints[endpoint])
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"

        data = json.dumps(body).encode() if body is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method=method,
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise TransportError(f"{method} {url} failed with HTTP {e.code}", status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if status >= 300:
            raise TransportError(f"{method} {url} returned HTTP {status}", status=status)

        try:
            envelope = json.loads(raw.decode() or "null")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TransportError(f"{method} {url} returned malformed JSON") from e
        if not isinstance(envelope, dict):
            raise TransportError(f"{method} {url} returned an unexpected payload")

        logger.debug("%s %s -> %s", method, url, envelope.get("status"))
        return envelope


def _is_success(envelope: dict) -> bool:
    return envelope.get("status") == "success"


def _decode(label: str, envelope: dict, build) -> list:
    """Build records from ``envelope["data"]``; any bad record is a TransportError."""
    records = envelope.get("data") or []
    if not isinstance(records, list):
        raise TransportError(f"Store returned {label} that are not a list")
    try:
        return [build(r) for r in records]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise TransportError(f"Store returned a malformed {label} record: {e!r}") from e


def _failure(envelope: dict) -> StoreResponse:
    message = envelope.get("message") or "Store reported an error"
    logger.warning("Store refused request: %s", message)
    return StoreResponse(False, message)


def _as_archived(notification: Notification) -> Notification:
    """History rows do not always carry archive metadata; fill it in."""
    if notification.is_archived:
        return notification
    reason = ArchiveReason.ACTED_UPON if notification.acted_upon else ArchiveReason.DISMISSED
    return replace(notification, archived_at=notification.created_at, archive_reason=reason)
