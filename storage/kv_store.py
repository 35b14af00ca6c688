"""Key-value persistence for the offline queue, quarantine and session."""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from sqlmodel import Session

from datetime_utils import utc_now
from models.kv_entry import KVEntry
from storage.db import get_session


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def set_many(self, values: Mapping[str, Any]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def _serialise(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _deserialise(payload: Optional[str], default: Any) -> Any:
    if not payload:
        return default
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        return default


class SqlKeyValueStore:
    """JSON values stored in the ``kventry`` table of ``app.db``."""

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        with self._session_factory() as session:
            row = session.get(KVEntry, key)
            return _deserialise(row.value if row else None, default)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        """Write all ``values`` in a single transaction."""

        now = utc_now()
        with self._session_factory() as session:
            for key, value in values.items():
                row = session.get(KVEntry, key)
                payload = _serialise(value)
                if row is None:
                    row = KVEntry(key=key, value=payload, updated_at=now)
                else:
                    row.value = payload
                    row.updated_at = now
                session.add(row)
            session.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            row = session.get(KVEntry, key)
            if row is not None:
                session.delete(row)
                session.commit()


class MemoryKeyValueStore:
    """In-process store; values still round-trip through JSON."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, str] = {}
        self.writes = 0
        for key, value in (initial or {}).items():
            self._data[key] = _serialise(value)

    def get(self, key: str, default: Any = None) -> Any:
        return _deserialise(self._data.get(key), default)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        encoded = {key: _serialise(value) for key, value in values.items()}
        self._data.update(encoded)
        self.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


__all__ = ["KeyValueStore", "SqlKeyValueStore", "MemoryKeyValueStore"]
