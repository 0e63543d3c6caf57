"""
Lifecycle classifier - buckets renewable entities by how close they are to expiry.

States, first match wins:
    unknown           expiry date missing or unparseable
    redemption        more than 30 days past expiry
    expired           expired, up to 30 days ago (the day of expiry included)
    expiring_7_days   expires within the next 7 days
    expiring_30_days  expires after the 7-day mark, within 30 days
    active            expires more than 30 days from now
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from renewals.clock import as_utc
from renewals.entity import Entity, parse_expiry
from renewals.errors import DataQualityError

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 7
EXPIRING_DAYS = 30
REDEMPTION_AFTER_DAYS = 30

ONE_DAY = timedelta(days=1)


class LifecycleState(str, Enum):
    """Where an entity sits in its renewal lifecycle."""

    UNKNOWN = "unknown"
    REDEMPTION = "redemption"
    EXPIRED = "expired"
    EXPIRING_7_DAYS = "expiring_7_days"
    EXPIRING_30_DAYS = "expiring_30_days"
    ACTIVE = "active"


BUCKET_NAMES = ("active", "expiring_7_days", "expiring_30_days", "expired", "redemption")

_STATE_TO_BUCKET = {
    LifecycleState.ACTIVE: "active",
    LifecycleState.EXPIRING_7_DAYS: "expiring_7_days",
    LifecycleState.EXPIRING_30_DAYS: "expiring_30_days",
    LifecycleState.EXPIRED: "expired",
    LifecycleState.REDEMPTION: "redemption",
}


@dataclass
class RejectedEntity:
    """An entity left out of every bucket because its date is unusable."""

    entity_id: str
    name: str
    reason: str

    def to_dict(self) -> dict:
        return {"entity_id": self.entity_id, "name": self.name, "reason": self.reason}


@dataclass
class Buckets:
    """Disjoint partition of entities by lifecycle state."""

    active: list[Entity] = field(default_factory=list)
    expiring_7_days: list[Entity] = field(default_factory=list)
    expiring_30_days: list[Entity] = field(default_factory=list)
    expired: list[Entity] = field(default_factory=list)
    redemption: list[Entity] = field(default_factory=list)
    rejected: list[RejectedEntity] = field(default_factory=list)

    def items(self) -> list[tuple[str, list[Entity]]]:
        return [(name, getattr(self, name)) for name in BUCKET_NAMES]

    def counts(self) -> dict[str, int]:
        return {name: len(entities) for name, entities in self.items()}

    def ids(self) -> dict[str, list[str]]:
        return {name: [e.id for e in entities] for name, entities in self.items()}

    def to_dict(self) -> dict:
        data = {name: [e.to_dict() for e in entities] for name, entities in self.items()}
        data["rejected"] = [r.to_dict() for r in self.rejected]
        return data


def classify(expiry_date: Any, now: datetime) -> LifecycleState:
    """Map an expiry date and the current instant to a lifecycle state.

    Never raises: anything that is not a usable date is UNKNOWN.
    """
    try:
        expiry = parse_expiry(expiry_date)
    except DataQualityError:
        return LifecycleState.UNKNOWN

    now = as_utc(now)
    if expiry <= now:
        days_since_expiry = (now - expiry) // ONE_DAY
        if days_since_expiry > REDEMPTION_AFTER_DAYS:
            return LifecycleState.REDEMPTION
        return LifecycleState.EXPIRED

    # Compare differences; now + N days can leave the datetime range
    remaining = expiry - now
    if remaining <= timedelta(days=EXPIRING_SOON_DAYS):
        return LifecycleState.EXPIRING_7_DAYS
    if remaining <= timedelta(days=EXPIRING_DAYS):
        return LifecycleState.EXPIRING_30_DAYS
    return LifecycleState.ACTIVE


def categorize(entities: Iterable[Entity], now: datetime) -> Buckets:
    """Partition entities into the five lifecycle buckets.

    Every entity with a usable expiry date lands in exactly one bucket.
    Entities without one are listed in ``rejected`` and logged.
    """
    buckets = Buckets()
    for entity in entities:
        try:
            expiry = parse_expiry(entity.expiry_date)
        except DataQualityError as exc:
            buckets.rejected.append(
                RejectedEntity(entity_id=entity.id, name=entity.name, reason=str(exc))
            )
            continue
        except AttributeError:
            logger.error("Skipping malformed entity record %r", entity)
            continue

        state = classify(expiry, now)
        getattr(buckets, _STATE_TO_BUCKET[state]).append(entity)

    if buckets.rejected:
        logger.warning(
            "Excluded %d entity(ies) with unusable expiry dates: %s",
            len(buckets.rejected),
            ", ".join(f"{r.entity_id} ({r.reason})" for r in buckets.rejected),
        )
    return buckets


def days_until_expiry(expiry_date: Any, now: datetime) -> Optional[int]:
    """Whole days from the start of today (UTC) until expiry; negative once past."""
    try:
        expiry = parse_expiry(expiry_date)
    except DataQualityError:
        return None
    today = as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return (expiry - today) // ONE_DAY


def format_days_remaining(expiry_date: Any, now: datetime) -> str:
    days = days_until_expiry(expiry_date, now)
    if days is None:
        return "N/A"
    if days == 0:
        return "Expires today"
    if days == 1:
        return "1 day left"
    if days < 0:
        return f"{abs(days)} days ago"
    return f"{days} days left"


def dashboard_summary(buckets: Buckets) -> dict:
    """Counts and renewal value per bucket, suitable for a dashboard."""
    counts = buckets.counts()
    value = {
        name: round(sum(e.amount for e in entities), 2)
        for name, entities in buckets.items()
    }
    total_value = round(sum(value.values()), 2)
    total = sum(counts.values())

    def share(amount: float) -> float:
        return round(amount / total_value * 100, 1) if total_value else 0.0

    return {
        "total_entities": total,
        "counts": counts,
        "value": value,
        "total_value": total_value,
        "expired_value": value["expired"],
        "redemption_value": value["redemption"],
        "expired_share": share(value["expired"]),
        "redemption_share": share(value["redemption"]),
        "average_value": round(total_value / total, 2) if total else 0.0,
        "rejected": len(buckets.rejected),
    }
