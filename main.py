"""Console utility to inspect the offline queue and the stored session."""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from core.settings import APP_NAME, DB_PATH
from datetime_utils import from_epoch_seconds, to_rfc3339_utc
from services.backend import BackendRegistry
from services.failed_actions import FailedActionStore
from services.offline_queue import OfflineWriteQueue
from services.session_store import SessionStore
from storage.db import init_db
from storage.kv_store import KeyValueStore, SqlKeyValueStore


def _queue(store: KeyValueStore) -> OfflineWriteQueue:
    # Inspection only: nothing is replayed from the console
    return OfflineWriteQueue(store, BackendRegistry())


def cmd_status(store: KeyValueStore) -> int:
    queue = _queue(store)
    sessions = SessionStore(store)
    print(f"{APP_NAME} data: {DB_PATH}")
    print(f"Pending actions: {queue.size()}")
    print(f"Failed actions:  {len(queue.failed())}")
    if sessions.has_tokens():
        expiry = to_rfc3339_utc(from_epoch_seconds(sessions.expiry()))
        print(f"Session: stored (access token expires {expiry or 'unknown'})")
    else:
        print("Session: none")
    for action in queue.list():
        note = f" last error: {action.error}" if action.error else ""
        print(f"  [{action.id}] {action.type} retries={action.retries}{note}")
    return 0


def cmd_failed(store: KeyValueStore) -> int:
    failed = FailedActionStore(_queue(store))
    summaries = failed.summaries()
    if not summaries:
        print("No failed actions.")
        return 0
    for item in summaries:
        print(f"[{item.id}] {item.timestamp}  {item.summary}")
        print(f"    {item.error}")
    return 0


def cmd_discard(store: KeyValueStore, action_id: int) -> int:
    failed = FailedActionStore(_queue(store))
    if not failed.discard(action_id):
        print(f"No failed action with id {action_id}.", file=sys.stderr)
        return 1
    print(f"Discarded action {action_id}.")
    return 0


def cmd_sign_out(store: KeyValueStore) -> int:
    """Offline admin operation for when the app is not running.

    No token manager owns the session at that point, so the stored pair is
    cleared directly. A running app signs out through
    ``TokenLifecycleManager.logout``.
    """

    SessionStore(store).clear()
    print("Stored session removed.")
    return 0


def main(argv: Optional[List[str]] = None, store: Optional[KeyValueStore] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show pending actions and session state")
    sub.add_parser("failed", help="List actions that failed to sync")
    discard = sub.add_parser("discard", help="Permanently drop a failed action")
    discard.add_argument("action_id", type=int)
    sub.add_parser("sign-out", help="Forget the stored session tokens")
    args = parser.parse_args(argv)

    if store is None:
        init_db()
        store = SqlKeyValueStore()

    if args.command == "status":
        return cmd_status(store)
    if args.command == "failed":
        return cmd_failed(store)
    if args.command == "discard":
        return cmd_discard(store, args.action_id)
    return cmd_sign_out(store)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
