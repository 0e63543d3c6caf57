"""Error taxonomy and operation results for the renewal engine."""

from dataclasses import dataclass, field
from typing import Any, Optional


class RenewalsError(Exception):
    """Base class for renewal tracking errors."""


class DataQualityError(RenewalsError):
    """An entity carries a missing or unparseable expiry date."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class TransportError(RenewalsError):
    """The backing store is unreachable or answered with garbage."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class ConsistencyWarning:
    """More than one unresolved alert exists for the same entity and type.

    Reported only. Fixing it needs a uniqueness constraint in the store.
    """

    entity_id: str
    notification_type: str
    notification_ids: tuple[str, ...]

    @property
    def message(self) -> str:
        return (
            f"{len(self.notification_ids)} unresolved {self.notification_type} "
            f"notifications for entity {self.entity_id}: "
            f"{', '.join(self.notification_ids)}"
        )

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "type": self.notification_type,
            "notification_ids": list(self.notification_ids),
            "message": self.message,
        }


@dataclass
class OperationResult:
    """Outcome of an engine operation. Callers decide whether to retry."""

    success: bool
    message: str = ""
    data: Any = None
    errors: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, message: str = "", data: Any = None) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> "OperationResult":
        return cls(success=False, message=message, data=data, errors=[message])

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "errors": self.errors,
        }
