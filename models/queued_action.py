"""Offline mutations waiting to be replayed against the backend."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class QueuedAction:
    id: int
    type: str
    payload: Any = field(default_factory=dict)
    retries: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.error is None:
            data.pop("error")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedAction":
        return cls(
            id=int(data["id"]),
            type=str(data["type"]),
            payload=data.get("payload"),
            retries=int(data.get("retries") or 0),
            error=data.get("error"),
        )


@dataclass
class FailedAction(QueuedAction):
    """A queued action that exhausted its retry budget."""

    @classmethod
    def from_queued(cls, action: QueuedAction) -> "FailedAction":
        return cls(
            id=action.id,
            type=action.type,
            payload=action.payload,
            retries=action.retries,
            error=action.error,
        )

    def to_queued(self) -> QueuedAction:
        return QueuedAction(id=self.id, type=self.type, payload=self.payload)


__all__ = ["QueuedAction", "FailedAction"]
