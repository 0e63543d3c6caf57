"""Renewable entity model: domains, hosting accounts and subscriptions."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from renewals.clock import as_utc
from renewals.errors import DataQualityError


_OFFSET_FORMATS = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S.%f%z",
)


class EntityKind(str, Enum):
    """What is being renewed."""

    DOMAIN = "domain"
    HOSTING = "hosting"
    SUBSCRIPTION = "subscription"


@dataclass
class Entity:
    """Anything with a single expiry date that has to be renewed.

    ``expiry_date`` keeps the raw value as the store delivered it; it is only
    interpreted by :func:`parse_expiry` when classified.
    """

    name: str
    expiry_date: Any = None
    kind: EntityKind = EntityKind.DOMAIN
    amount: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict:
        expiry = self.expiry_date
        if isinstance(expiry, (date, datetime)):
            expiry = expiry.isoformat()
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "expiry_date": expiry,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: dict, kind: Optional[EntityKind] = None) -> "Entity":
        """Build an entity from a store record.

        Understands the native keys as well as the backend's
        ``domainName`` / ``dates.expiryDate`` shape.
        """
        dates = data.get("dates") or {}
        expiry = data.get("expiry_date")
        if expiry is None:
            expiry = data.get("expiryDate")
        if expiry is None and isinstance(dates, dict):
            expiry = dates.get("expiryDate")

        name = (
            data.get("name")
            or data.get("domainName")
            or data.get("domain_name")
            or data.get("planName")
            or ""
        )

        if kind is None:
            try:
                kind = EntityKind(data.get("kind", "domain"))
            except ValueError:
                kind = EntityKind.DOMAIN

        return cls(
            id=str(data.get("id") or uuid.uuid4().hex[:12]),
            name=name,
            expiry_date=expiry,
            kind=kind,
            amount=_to_amount(data.get("amount")),
        )


def parse_expiry(value: Any) -> datetime:
    """Interpret a raw expiry value as an aware UTC datetime.

    Accepts ``datetime``, ``date`` and ISO-8601 strings. Plain dates mean
    midnight UTC. Raises DataQualityError when there is nothing usable.
    """
    if value is None:
        raise DataQualityError("expiry date is missing", value)

    if isinstance(value, datetime):
        return _to_utc(value, value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise DataQualityError(f"unsupported expiry type {type(value).__name__}", value)

    text = value.strip()
    if not text:
        raise DataQualityError("expiry date is missing", value)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        return _to_utc(datetime.fromisoformat(text), value)
    except ValueError:
        pass
    # Offsets without a colon (+0000) that older fromisoformat rejects
    for fmt in _OFFSET_FORMATS:
        try:
            return _to_utc(datetime.strptime(text, fmt), value)
        except ValueError:
            continue
    raise DataQualityError(f"unparseable expiry date {value!r}", value)


def _to_utc(parsed: datetime, raw: Any) -> datetime:
    try:
        return as_utc(parsed)
    except OverflowError:
        raise DataQualityError(f"expiry date out of range {raw!r}", raw) from None


def _to_amount(raw) -> float:
    try:
        return float(raw or 0)
    except (TypeError, ValueError):
        return 0.0
