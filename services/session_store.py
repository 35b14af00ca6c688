from __future__ import annotations

from typing import Optional

from core.logs import get_logger
from core.settings import STORAGE_KEYS
from models.session import Session
from services.errors import InvalidToken
from services.tokens import TokenDecoder
from storage.kv_store import KeyValueStore


class SessionStore:
    """Persisted access/refresh token pair.

    Expiry is never stored: ``expiry()`` decodes it from the current access
    token on every call.
    """

    def __init__(
        self,
        store: KeyValueStore,
        decoder: Optional[TokenDecoder] = None,
        key: str = STORAGE_KEYS.session,
    ):
        self._store = store
        self._key = key
        self.decoder = decoder or TokenDecoder()
        self.logger = get_logger("session")
        self._session: Optional[Session] = Session.from_dict(store.get(key))

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._session.refresh_token if self._session else None

    def has_tokens(self) -> bool:
        return self._session is not None

    def save(self, access_token: str, refresh_token: str) -> Session:
        session = Session(access_token=access_token, refresh_token=refresh_token)
        self._session = session
        try:
            self._store.set(self._key, session.to_dict())
        except Exception as exc:
            self.logger.error("Failed to persist session: %s", exc)
        return session

    def clear(self) -> None:
        self._session = None
        try:
            self._store.delete(self._key)
        except Exception as exc:
            self.logger.error("Failed to remove stored session: %s", exc)

    def expiry(self) -> Optional[float]:
        token = self.access_token
        if not token:
            return None
        try:
            return self.decoder.expiry(token)
        except InvalidToken as exc:
            self.logger.warning("Cannot read access token expiry: %s", exc)
            return None


__all__ = ["SessionStore"]
