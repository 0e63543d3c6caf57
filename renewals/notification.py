"""Notification records and their state transitions."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from renewals.entity import parse_expiry
from renewals.errors import DataQualityError


class NotificationType(str, Enum):
    """Severity / intent of a notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    ACTION_NEEDED = "action_needed"


class NotificationAction(str, Enum):
    """State changes the store understands."""

    READ = "read"
    ACTED_UPON = "acted_upon"
    DISMISS = "dismiss"


class ArchiveReason(str, Enum):
    """Why a notification was moved to history."""

    ACTED_UPON = "acted_upon"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class NotificationDraft:
    """A request to create a notification; the store assigns the id."""

    type: NotificationType
    message: str
    entity_id: Optional[str] = None
    needs_action: bool = False
    repeat: bool = False
    repeat_interval_days: int = 1

    @property
    def dedup_key(self) -> Optional[tuple[str, str]]:
        """Pair used for duplicate suppression, None when exempt."""
        if self.entity_id is None or self.type != NotificationType.ACTION_NEEDED:
            return None
        return (str(self.entity_id), self.type.value)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "entity_id": self.entity_id,
            "needs_action": self.needs_action,
            "repeat": self.repeat,
            "repeat_interval_days": self.repeat_interval_days,
        }


@dataclass(frozen=True)
class Notification:
    """A user-facing alert, active or archived."""

    id: str
    type: NotificationType
    message: str
    entity_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False
    acted_upon: bool = False
    needs_action: bool = False
    repeat: bool = False
    repeat_interval_days: int = 1
    archived_at: Optional[datetime] = None
    archive_reason: Optional[ArchiveReason] = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_unresolved(self) -> bool:
        return not self.acted_upon and not self.is_archived

    @property
    def dedup_key(self) -> Optional[tuple[str, str]]:
        if self.entity_id is None or self.type != NotificationType.ACTION_NEEDED:
            return None
        return (str(self.entity_id), self.type.value)

    # ---- Transitions ----

    def mark_read(self) -> "Notification":
        return replace(self, read=True)

    def mark_acted_upon(self, at: datetime) -> "Notification":
        return replace(
            self, acted_upon=True, archived_at=at, archive_reason=ArchiveReason.ACTED_UPON
        )

    def dismiss(self, at: datetime) -> "Notification":
        return replace(self, archived_at=at, archive_reason=ArchiveReason.DISMISSED)

    # ---- Serialization ----

    @classmethod
    def from_draft(cls, notification_id: str, draft: NotificationDraft, created_at: datetime) -> "Notification":
        return cls(
            id=str(notification_id),
            type=draft.type,
            message=draft.message,
            entity_id=draft.entity_id,
            created_at=created_at,
            needs_action=draft.needs_action,
            repeat=draft.repeat,
            repeat_interval_days=draft.repeat_interval_days,
        )

    def to_dict(self) -> dict:
        def fmt_dt(dt):
            return dt.isoformat() if dt else None

        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "type": self.type.value,
            "message": self.message,
            "created_at": fmt_dt(self.created_at),
            "read": self.read,
            "acted_upon": self.acted_upon,
            "needs_action": self.needs_action,
            "repeat": self.repeat,
            "repeat_interval_days": self.repeat_interval_days,
            "archived_at": fmt_dt(self.archived_at),
            "archive_reason": self.archive_reason.value if self.archive_reason else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        """Deserialize a record; also accepts the backend's wire names
        (``domain_id``, ``is_read``, ``days_until_repeat``, 0/1 flags)."""
        def parse_dt(val):
            if not val:
                return None
            try:
                return parse_expiry(val)
            except DataQualityError:
                return None

        entity_id = data.get("entity_id", data.get("domain_id"))
        reason = _parse_reason(data.get("archive_reason"))

        return cls(
            id=str(data["id"]),
            type=_parse_type(data.get("type")),
            message=data.get("message", ""),
            entity_id=str(entity_id) if entity_id not in (None, "") else None,
            created_at=parse_dt(data.get("created_at")) or datetime.now(timezone.utc),
            read=_flag(data.get("read", data.get("is_read"))),
            acted_upon=_flag(data.get("acted_upon")),
            needs_action=_flag(data.get("needs_action")),
            repeat=_flag(data.get("repeat")),
            repeat_interval_days=int(
                data.get("repeat_interval_days", data.get("days_until_repeat")) or 1
            ),
            archived_at=parse_dt(data.get("archived_at")),
            archive_reason=reason,
        )


def _parse_type(raw) -> NotificationType:
    try:
        return NotificationType(raw)
    except ValueError:
        return NotificationType.INFO


def _flag(raw) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes")
    return bool(raw)


def _parse_reason(raw) -> Optional[ArchiveReason]:
    if not raw:
        return None
    try:
        return ArchiveReason(raw)
    except ValueError:
        return None
