"""Keeps an authenticated session alive across access-token expiry.

One proactive refresh timer per session fires ``refresh_lead_sec`` before the
access token expires. Backend calls that report the token as invalid go
through :meth:`TokenLifecycleManager.handle_auth_failure`. Both paths share a
single in-flight refresh, so a single-use refresh token is never spent twice.
A failed refresh ends the session.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, List, Optional, Set

from core.logs import get_logger
from core.settings import SESSION
from services.backend import AuthBackend
from services.clock import Clock, TimerHandle
from services.session_store import SessionStore


SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


StateListener = Callable[[SessionState, Optional[str]], None]


def _describe(exc: BaseException) -> str:
    kind = getattr(exc, "kind", None) or type(exc).__name__
    return f"{kind}: {exc}"


class TokenLifecycleManager:
    def __init__(
        self,
        sessions: SessionStore,
        auth: AuthBackend,
        clock: Clock,
        *,
        refresh_lead_sec: int = SESSION.refresh_lead_sec,
    ):
        self.sessions = sessions
        self.auth = auth
        self.clock = clock
        self.refresh_lead_sec = refresh_lead_sec
        self.logger = get_logger("session")
        self._state = SessionState.UNAUTHENTICATED
        self._generation = 0
        self._timer: Optional[TimerHandle] = None
        self._inflight: Optional[asyncio.Future] = None
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # Observers
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def access_token(self) -> Optional[str]:
        if self._state in (SessionState.AUTHENTICATED, SessionState.REFRESHING):
            return self.sessions.access_token
        return None

    @property
    def expiry(self) -> Optional[float]:
        return self.sessions.expiry()

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Transitions
    async def start(self) -> SessionState:
        """Resume a stored session at app start."""

        if not self.sessions.has_tokens():
            return self._state

        self._set_state(SessionState.AUTHENTICATING)
        generation = self._generation
        try:
            await self.auth.identify(self.sessions.access_token)
        except Exception as exc:
            if generation != self._generation:
                return self._state
            self.logger.info("Stored access token rejected (%s); trying refresh", _describe(exc))
            await self._refresh(validate=True)
            return self._state

        if generation != self._generation:
            return self._state
        self._set_state(SessionState.AUTHENTICATED)
        if self._schedule(generation):
            await self.refresh()
        return self._state

    async def sign_in(self, access_token: str, refresh_token: str) -> SessionState:
        """Install a new session, replacing any previous one."""

        self._replace_generation()
        self.sessions.save(access_token, refresh_token)
        self._set_state(SessionState.AUTHENTICATED)
        if self._schedule(self._generation):
            await self.refresh()
        return self._state

    async def refresh(self) -> Optional[str]:
        """Refresh the access token, joining a refresh already in flight.

        Returns the new access token, or ``None`` when the session ended.
        """

        return await self._refresh(validate=False)

    async def handle_auth_failure(self) -> Optional[str]:
        """Reactive path for a backend call that reported the token invalid."""

        if self._state not in (SessionState.AUTHENTICATED, SessionState.REFRESHING):
            return None
        self.logger.info("Backend rejected the access token; refreshing")
        return await self.refresh()

    def logout(self) -> None:
        self.logger.info("User signed out")
        self._end_session(expired=False)

    async def close(self) -> None:
        """Stop timers and background work without touching stored tokens."""

        self._cancel_timer()
        tasks = list(self._background)
        if self._inflight is not None:
            tasks.append(self._inflight)
            self._inflight = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Refresh internals
    async def _refresh(self, *, validate: bool) -> Optional[str]:
        if self._inflight is not None:
            return await asyncio.shield(self._inflight)
        if self._state not in (SessionState.AUTHENTICATED, SessionState.AUTHENTICATING):
            return None
        if not self.sessions.has_tokens():
            return None

        self._cancel_timer()
        self._set_state(SessionState.REFRESHING)
        task = asyncio.ensure_future(self._run_refresh(self._generation, validate))
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Future) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _run_refresh(self, generation: int, validate: bool) -> Optional[str]:
        refresh_token = self.sessions.refresh_token
        try:
            result = await self.auth.refresh(refresh_token)
            self.sessions.decoder.expiry(result.access_token)
            if validate:
                await self.auth.identify(result.access_token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                return None
            self.logger.warning("Token refresh failed (%s); ending session", _describe(exc))
            self._end_session(expired=True)
            return None

        if generation != self._generation:
            self.logger.info("Discarding refresh result for a session that is no longer active")
            return None

        self.sessions.save(result.access_token, result.refresh_token or refresh_token)
        self._set_state(SessionState.AUTHENTICATED)
        self.logger.info("Access token refreshed")
        if self._schedule(generation):
            # No second refresh here; the next rejected call refreshes reactively
            self.logger.warning(
                "Refreshed token is already inside the %ss refresh window; "
                "next refresh waits for a rejected call",
                self.refresh_lead_sec,
            )
        return result.access_token

    # ------------------------------------------------------------------
    # Timer
    def _schedule(self, generation: int) -> bool:
        """Arm the proactive timer; return True when the refresh is already due."""

        self._cancel_timer()
        expiry = self.sessions.expiry()
        if expiry is None:
            return True
        delay = expiry - self.refresh_lead_sec - self.clock.time()
        if delay <= 0:
            self.logger.info("Access token expires in under %ss; refresh is due now", self.refresh_lead_sec)
            return True
        self._timer = self.clock.call_later(delay, lambda: self._on_timer(generation))
        self.logger.debug("Proactive refresh scheduled in %.1fs", delay)
        return False

    def _on_timer(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._state != SessionState.AUTHENTICATED:
            return
        self.logger.info("Proactively refreshing access token")
        task = asyncio.ensure_future(self.refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    def _replace_generation(self) -> None:
        self._generation += 1
        self._cancel_timer()
        self._inflight = None

    def _end_session(self, *, expired: bool) -> None:
        self._replace_generation()
        self.sessions.clear()
        message = SESSION_EXPIRED_MESSAGE if expired else None
        self._set_state(SessionState.LOGGED_OUT, message)

    def _set_state(self, state: SessionState, message: Optional[str] = None) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state, message)
            except Exception as exc:
                self.logger.error("Session listener failed: %s", exc)


__all__ = ["SESSION_EXPIRED_MESSAGE", "SessionState", "StateListener", "TokenLifecycleManager"]
