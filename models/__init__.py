"""Data models exposed by the sync layer."""
from .kv_entry import KVEntry
from .queued_action import FailedAction, QueuedAction
from .session import Session

__all__ = ["KVEntry", "QueuedAction", "FailedAction", "Session"]
