"""
Renewal Tracker Module.

Lifecycle classification and expiry notifications for renewable entities:
domains, hosting accounts and subscriptions.

Features:
- Disjoint lifecycle buckets (active, expiring in 7/30 days, expired, redemption)
- One unresolved action-needed alert per expiring entity
- Notification lifecycle: read, acted upon, dismissed, history
- Scheduled sync against a JSON-file or HTTP backend
"""

from renewals.clock import FixedClock, SystemClock
from renewals.engine import NotificationEngine
from renewals.entity import Entity, EntityKind
from renewals.errors import (
    ConsistencyWarning,
    DataQualityError,
    OperationResult,
    TransportError,
)
from renewals.lifecycle import Buckets, LifecycleState, categorize, classify
from renewals.notification import Notification, NotificationType
from renewals.store import JsonFileStore, RenewalStore
from renewals.sync import SyncDriver

__all__ = [
    "FixedClock",
    "SystemClock",
    "NotificationEngine",
    "Entity",
    "EntityKind",
    "ConsistencyWarning",
    "DataQualityError",
    "OperationResult",
    "TransportError",
    "Buckets",
    "LifecycleState",
    "categorize",
    "classify",
    "Notification",
    "NotificationType",
    "JsonFileStore",
    "RenewalStore",
    "SyncDriver",
]
