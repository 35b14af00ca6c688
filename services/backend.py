"""Seam between the resilience layer and the business backend."""
from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Union

from services.errors import BackendError, ValidationFailed, classify_exception


Handler = Callable[[Any], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    # Set when the backend rotates refresh tokens
    refresh_token: Optional[str] = None


class AuthBackend(Protocol):
    async def identify(self, access_token: str) -> Any:
        """Validate ``access_token``; raise :class:`BackendError` when rejected."""
        ...

    async def refresh(self, refresh_token: str) -> RefreshResult:
        ...


class BackendRegistry:
    """Maps a mutation type such as ``update_todo`` to its async backend call.

    Whatever a handler raises is reported as a :class:`BackendError`
    subclass so callers only ever branch on the failure kind.
    """

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def register(self, action_type: str, handler: Handler) -> None:
        self._handlers[action_type] = handler

    def types(self) -> Iterable[str]:
        return sorted(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers

    async def call(self, action_type: str, payload: Any) -> Any:
        handler = self._handlers.get(action_type)
        if handler is None:
            raise ValidationFailed(f"No backend handler for {action_type!r}")
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
            return result
        except BackendError:
            raise
        except Exception as exc:
            raise classify_exception(exc) from exc


__all__ = ["AuthBackend", "BackendRegistry", "Handler", "RefreshResult"]
