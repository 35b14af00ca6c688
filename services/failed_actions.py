from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Optional

from core.logs import get_logger
from core.settings import SYNC
from datetime_utils import from_epoch_ms, to_rfc3339_utc
from models.queued_action import FailedAction
from services.offline_queue import OfflineWriteQueue, ReplayOutcome


@dataclass(frozen=True)
class FailedActionSummary:
    id: int
    summary: str
    error: str
    timestamp: Optional[str]


def summarize(action: FailedAction, payload_chars: int = SYNC.summary_payload_chars) -> FailedActionSummary:
    try:
        payload = json.dumps(action.payload, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        payload = repr(action.payload)
    if len(payload) > payload_chars:
        payload = payload[:payload_chars] + "..."
    return FailedActionSummary(
        id=action.id,
        summary=f"{action.type.replace('_', ' ')}: {payload}",
        error=action.error or "Unknown error",
        timestamp=to_rfc3339_utc(from_epoch_ms(action.id)),
    )


class FailedActionStore:
    """User-facing view of actions that exhausted their retry budget."""

    def __init__(self, queue: OfflineWriteQueue):
        self.queue = queue
        self.logger = get_logger("sync")

    def list(self) -> List[FailedAction]:
        return self.queue.failed()

    def get(self, action_id: int) -> Optional[FailedAction]:
        return next((a for a in self.queue.failed() if a.id == action_id), None)

    def count(self) -> int:
        return len(self.queue.failed())

    def summaries(self) -> List[FailedActionSummary]:
        return [summarize(action) for action in self.queue.failed()]

    async def retry(self, action_id: int) -> ReplayOutcome:
        """Requeue at zero retries and make one immediate attempt.

        A failure leaves the action queued with a fresh retry budget; it is
        not sent straight back to quarantine.
        """

        action = self.queue.release_failed(action_id)
        if action is None:
            self.logger.info("Retry requested for unknown failed action %s", action_id)
            return ReplayOutcome.MISSING
        self.logger.info("Retrying failed action %s (%s)", action.id, action.type)
        outcome = await self.queue.replay_one(action.id, allow_quarantine=False)
        self.logger.info("Manual retry of %s finished: %s", action.id, outcome.value)
        return outcome

    def discard(self, action_id: int) -> bool:
        """Abandon the mutation for good."""

        action = self.queue.drop_failed(action_id)
        if action is None:
            return False
        self.logger.warning(
            "Discarded failed action %s (%s) at user request; last error: %s; payload: %s",
            action.id,
            action.type,
            action.error,
            json.dumps(action.payload, ensure_ascii=False, default=str)[:SYNC.error_max_length],
        )
        return True


__all__ = ["FailedActionStore", "FailedActionSummary", "summarize"]
