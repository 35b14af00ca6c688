from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from core.logs import get_logger
from core.settings import STORAGE_KEYS, SYNC
from models.queued_action import FailedAction, QueuedAction
from services.backend import BackendRegistry
from services.errors import AuthInvalid, BackendError, NetworkUnavailable, classify_exception
from storage.kv_store import KeyValueStore


AuthHandler = Callable[[], Awaitable[Optional[str]]]
ChangeListener = Callable[[int, int], None]


class ReplayOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    REQUEUED = "requeued"
    QUARANTINED = "quarantined"
    # Nothing recorded; the action stays queued as it was
    OFFLINE = "offline"
    AUTH_BLOCKED = "auth_blocked"
    DEFERRED = "deferred"
    MISSING = "missing"


@dataclass
class DrainResult:
    succeeded: List[int] = field(default_factory=list)
    requeued: List[int] = field(default_factory=list)
    quarantined: List[int] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.succeeded or self.requeued or self.quarantined)


def _json_safe(payload: Any) -> Any:
    """Copy of ``payload`` that the store can always serialise."""

    try:
        return json.loads(json.dumps(payload, ensure_ascii=False, default=str))
    except ValueError:
        # Circular references
        return repr(payload)


def _load_actions(store: KeyValueStore, key: str, cls):
    raw = store.get(key, [])
    if not isinstance(raw, list):
        return []
    actions = []
    for item in raw:
        try:
            actions.append(cls.from_dict(item))
        except (KeyError, TypeError, ValueError):
            continue
    return actions


class OfflineWriteQueue:
    """Persisted FIFO of mutations that have not reached the backend yet.

    The queue also owns the quarantine list so an action can be moved between
    the two in a single write. Every mutation of either list happens while no
    ``await`` is pending, and replays are serialised by ``_busy``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: BackendRegistry,
        *,
        auth_handler: Optional[AuthHandler] = None,
        time_source: Callable[[], float] = time.time,
        max_retries: int = SYNC.max_retries,
    ):
        self.store = store
        self.backend = backend
        self.auth_handler = auth_handler
        self.max_retries = max_retries
        self._time = time_source
        self.logger = get_logger("sync")
        self._listeners: List[ChangeListener] = []
        self._busy = False
        self._pending: List[QueuedAction] = _load_actions(store, STORAGE_KEYS.offline_queue, QueuedAction)
        self._failed: List[FailedAction] = _load_actions(store, STORAGE_KEYS.failed_actions, FailedAction)
        known = [a.id for a in self._pending] + [a.id for a in self._failed]
        self._last_id = max(known, default=0)

    # ------------------------------------------------------------------
    # Public API
    def enqueue(self, action_type: str, payload: Any) -> int:
        action = QueuedAction(id=self._next_id(), type=action_type, payload=_json_safe(payload))
        self._pending.append(action)
        self._persist()
        self.logger.info("Queued offline action %s (%s); %s pending", action.id, action_type, len(self._pending))
        return action.id

    def size(self) -> int:
        return len(self._pending)

    def list(self) -> List[QueuedAction]:
        return [QueuedAction.from_dict(a.to_dict()) for a in self._pending]

    def remove(self, action_id: int) -> bool:
        """Drop a queued action; refused while a replay is running."""

        if self._busy:
            self.logger.info("Not removing action %s while a replay is running", action_id)
            return False
        action = self._find_pending(action_id)
        if action is None:
            return False
        self._pending.remove(action)
        self._persist()
        self.logger.info("Removed queued action %s (%s)", action.id, action.type)
        return True

    @property
    def draining(self) -> bool:
        return self._busy

    def add_listener(self, listener: ChangeListener) -> None:
        """``listener(pending_count, failed_count)`` after each persisted change."""

        self._listeners.append(listener)

    async def drain_once(self) -> DrainResult:
        result = DrainResult()
        if self._busy:
            self.logger.debug("Drain already running; skipping")
            return result
        if not self._pending:
            return result

        self._busy = True
        try:
            snapshot = [a.id for a in self._pending]
            self.logger.info("Draining %s offline action(s)", len(snapshot))
            for action_id in snapshot:
                action = self._find_pending(action_id)
                if action is None:
                    continue
                outcome = await self._replay(action, allow_quarantine=True)
                if outcome is ReplayOutcome.SUCCEEDED:
                    result.succeeded.append(action_id)
                elif outcome is ReplayOutcome.REQUEUED:
                    result.requeued.append(action_id)
                elif outcome is ReplayOutcome.QUARANTINED:
                    result.quarantined.append(action_id)
                elif outcome is ReplayOutcome.MISSING:
                    continue
                else:
                    self.logger.info("Drain stopped at action %s (%s)", action_id, outcome.value)
                    break
        finally:
            self._busy = False

        self.logger.info(
            "Drain finished: %s synced, %s requeued, %s quarantined, %s pending",
            len(result.succeeded),
            len(result.requeued),
            len(result.quarantined),
            len(self._pending),
        )
        return result

    async def replay_one(self, action_id: int, *, allow_quarantine: bool = True) -> ReplayOutcome:
        """Single replay attempt of one queued action."""

        action = self._find_pending(action_id)
        if action is None:
            return ReplayOutcome.MISSING
        if self._busy:
            return ReplayOutcome.DEFERRED
        self._busy = True
        try:
            return await self._replay(action, allow_quarantine=allow_quarantine)
        finally:
            self._busy = False

    # ------------------------------------------------------------------
    # Quarantine access for FailedActionStore
    def failed(self) -> List[FailedAction]:
        return [FailedAction.from_dict(a.to_dict()) for a in self._failed]

    def release_failed(self, action_id: int) -> Optional[QueuedAction]:
        """Move a quarantined action back to the end of the queue at zero retries."""

        failed = self._find_failed(action_id)
        if failed is None:
            return None
        self._failed.remove(failed)
        action = failed.to_queued()
        self._pending.append(action)
        self._persist()
        return action

    def drop_failed(self, action_id: int) -> Optional[FailedAction]:
        failed = self._find_failed(action_id)
        if failed is None:
            return None
        self._failed.remove(failed)
        self._persist()
        return failed

    # ------------------------------------------------------------------
    # Replay
    async def _replay(self, action: QueuedAction, *, allow_quarantine: bool) -> ReplayOutcome:
        for attempt in range(2):
            try:
                await self.backend.call(action.type, action.payload)
            except AuthInvalid:
                if attempt or self.auth_handler is None:
                    return ReplayOutcome.AUTH_BLOCKED
                token = await self.auth_handler()
                if token is None:
                    return ReplayOutcome.AUTH_BLOCKED
                continue
            except NetworkUnavailable:
                return ReplayOutcome.OFFLINE
            except Exception as exc:
                error = classify_exception(exc)
                if isinstance(error, NetworkUnavailable):
                    return ReplayOutcome.OFFLINE
                return self._record_failure(action, error, allow_quarantine)
            self._complete(action)
            return ReplayOutcome.SUCCEEDED
        return ReplayOutcome.AUTH_BLOCKED

    def _complete(self, action: QueuedAction) -> None:
        if action in self._pending:
            self._pending.remove(action)
        self._persist()
        self.logger.info("Synced offline action %s (%s)", action.id, action.type)

    def _record_failure(
        self, action: QueuedAction, error: BackendError, allow_quarantine: bool
    ) -> ReplayOutcome:
        if action not in self._pending:
            return ReplayOutcome.MISSING
        action.retries += 1
        action.error = str(error)[: SYNC.error_max_length]
        if not error.retryable and allow_quarantine:
            action.retries = max(action.retries, self.max_retries)

        if allow_quarantine and action.retries >= self.max_retries:
            self._pending.remove(action)
            self._failed.append(FailedAction.from_queued(action))
            self._persist()
            self.logger.warning(
                "Action %s (%s) quarantined after %s attempt(s): %s",
                action.id,
                action.type,
                action.retries,
                action.error,
            )
            return ReplayOutcome.QUARANTINED

        self._persist()
        self.logger.warning(
            "Action %s (%s) failed with %s, attempt %s/%s",
            action.id,
            action.type,
            error.kind,
            action.retries,
            self.max_retries,
        )
        return ReplayOutcome.REQUEUED

    # ------------------------------------------------------------------
    # helpers
    def _next_id(self) -> int:
        now_ms = int(self._time() * 1000)
        self._last_id = max(now_ms, self._last_id + 1)
        return self._last_id

    def _find_pending(self, action_id: int) -> Optional[QueuedAction]:
        return next((a for a in self._pending if a.id == action_id), None)

    def _find_failed(self, action_id: int) -> Optional[FailedAction]:
        return next((a for a in self._failed if a.id == action_id), None)

    def _persist(self) -> None:
        try:
            self.store.set_many(
                {
                    STORAGE_KEYS.offline_queue: [a.to_dict() for a in self._pending],
                    STORAGE_KEYS.failed_actions: [a.to_dict() for a in self._failed],
                }
            )
        except Exception as exc:
            self.logger.error("Failed to persist offline queue: %s", exc)
        for listener in list(self._listeners):
            try:
                listener(len(self._pending), len(self._failed))
            except Exception as exc:
                self.logger.error("Queue listener failed: %s", exc)


__all__ = ["AuthHandler", "DrainResult", "OfflineWriteQueue", "ReplayOutcome"]
