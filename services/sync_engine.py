"""Decides when the offline queue is drained and reports the outcome.

Drains happen on app start when already online, on every offline -> online
transition, and on explicit request. There is no background retry timer:
failed-but-not-quarantined actions wait for the next reconnect.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from core.logs import get_logger
from core.settings import SYNC
from services.errors import AuthInvalid, NetworkUnavailable
from services.offline_queue import DrainResult, OfflineWriteQueue
from services.token_lifecycle import TokenLifecycleManager


ONLINE_MESSAGE = "You are back online."
OFFLINE_MESSAGE = "You are now offline. Changes will be saved locally and synced later."


@dataclass(frozen=True)
class Notice:
    message: str
    level: str  # "success" | "error"


@dataclass
class SyncSummary:
    synced: int = 0
    requeued: int = 0
    quarantined: int = 0
    pending: int = 0

    @classmethod
    def from_drain(cls, result: DrainResult, pending: int) -> "SyncSummary":
        return cls(
            synced=len(result.succeeded),
            requeued=len(result.requeued),
            quarantined=len(result.quarantined),
            pending=pending,
        )

    @property
    def notices(self) -> List[Notice]:
        notices: List[Notice] = []
        if self.synced:
            notices.append(
                Notice(
                    f"Successfully synced {self.synced} offline action(s). "
                    "Your data is now up-to-date.",
                    "success",
                )
            )
        if self.quarantined:
            notices.append(
                Notice(
                    f"{self.quarantined} action(s) failed to sync after multiple attempts. "
                    "You can review them in Settings.",
                    "error",
                )
            )
        return notices

    @property
    def message(self) -> str:
        return " ".join(n.message for n in self.notices)


@dataclass
class SubmitResult:
    queued: bool
    action_id: Optional[int] = None
    value: Any = None


NoticeListener = Callable[[Notice], None]


class SyncEngine:
    def __init__(
        self,
        queue: OfflineWriteQueue,
        *,
        session: Optional[TokenLifecycleManager] = None,
        online: bool = False,
    ):
        self.queue = queue
        self.session = session
        self._online = online
        self._listeners: List[NoticeListener] = []
        self.logger = get_logger("sync")
        if session is not None and queue.auth_handler is None:
            queue.auth_handler = session.handle_auth_failure

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Triggers
    async def start(self, online: bool) -> Optional[SyncSummary]:
        """App start: drain what a previous run left behind if already online."""

        self._online = online
        if not SYNC.enabled or not online:
            return None
        return await self.sync_now()

    async def on_connectivity_change(self, online: bool) -> Optional[SyncSummary]:
        was_online = self._online
        self._online = online
        if online == was_online:
            return None
        if not online:
            self.logger.info("Connectivity lost")
            self._notify(Notice(OFFLINE_MESSAGE, "error"))
            return None
        self.logger.info("Connectivity restored")
        self._notify(Notice(ONLINE_MESSAGE, "success"))
        if not SYNC.enabled:
            return None
        return await self.sync_now()

    async def sync_now(self) -> SyncSummary:
        result = await self.queue.drain_once()
        summary = SyncSummary.from_drain(result, self.queue.size())
        for notice in summary.notices:
            self._notify(notice)
        return summary

    # ------------------------------------------------------------------
    # Mutations from the UI
    async def submit(self, action_type: str, payload: Any, *, optimistic: bool = False) -> SubmitResult:
        """Run a backend mutation, falling back to the offline queue.

        ``AuthInvalid`` triggers one reactive refresh and one retry of the
        call; if that still fails the error reaches the caller. Validation and
        server errors are never queued here: the caller is online and can
        show them directly.
        """

        if optimistic or not self._online:
            action_id = self.queue.enqueue(action_type, payload)
            return SubmitResult(queued=True, action_id=action_id)
        try:
            value = await self._call_with_reauth(action_type, payload)
        except NetworkUnavailable as exc:
            self.logger.info("Backend unreachable for %s (%s); queueing", action_type, exc)
            action_id = self.queue.enqueue(action_type, payload)
            return SubmitResult(queued=True, action_id=action_id)
        return SubmitResult(queued=False, value=value)

    async def _call_with_reauth(self, action_type: str, payload: Any) -> Any:
        backend = self.queue.backend
        try:
            return await backend.call(action_type, payload)
        except AuthInvalid:
            if self.session is None:
                raise
            token = await self.session.handle_auth_failure()
            if token is None:
                raise
        return await backend.call(action_type, payload)

    def _notify(self, notice: Notice) -> None:
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as exc:
                self.logger.error("Sync notice listener failed: %s", exc)


__all__ = [
    "Notice",
    "OFFLINE_MESSAGE",
    "ONLINE_MESSAGE",
    "SubmitResult",
    "SyncEngine",
    "SyncSummary",
]
