import asyncio

from conftest import ScriptedBackend
from core.settings import STORAGE_KEYS
from services.backend import BackendRegistry
from services.errors import AuthInvalid, NetworkUnavailable, ServerError, ValidationFailed
from services.offline_queue import OfflineWriteQueue, ReplayOutcome
from storage.kv_store import MemoryKeyValueStore


def _queue(backend, store=None, **kwargs):
    return OfflineWriteQueue(store or MemoryKeyValueStore(), backend.registry(), **kwargs)


def test_enqueue_persists_and_assigns_unique_ids():
    store = MemoryKeyValueStore()
    queue = _queue(ScriptedBackend(), store, time_source=lambda: 1_700_000_000.0)

    ids = [queue.enqueue("update_todo", {"name": str(i)}) for i in range(3)]

    assert len(set(ids)) == 3
    assert ids == sorted(ids)
    assert queue.size() == 3
    stored = store.get(STORAGE_KEYS.offline_queue)
    assert [item["id"] for item in stored] == ids
    assert stored[0] == {"id": ids[0], "type": "update_todo", "payload": {"name": "0"}, "retries": 0}


def test_enqueue_never_raises_when_persistence_fails():
    class BrokenStore(MemoryKeyValueStore):
        def set_many(self, values):
            raise OSError("disk full")

    queue = _queue(ScriptedBackend(), BrokenStore())

    action_id = queue.enqueue("update_todo", {"name": "a"})

    assert queue.size() == 1
    assert queue.list()[0].id == action_id


def test_ids_stay_unique_after_reload_with_clock_behind():
    store = MemoryKeyValueStore()
    first = _queue(ScriptedBackend(), store, time_source=lambda: 2_000_000_000.0)
    old_id = first.enqueue("update_todo", {"name": "a"})

    reloaded = _queue(ScriptedBackend(), store, time_source=lambda: 1_000_000_000.0)
    new_id = reloaded.enqueue("update_todo", {"name": "b"})

    assert new_id > old_id


def test_drain_replays_in_fifo_order_and_removes_successes():
    backend = ScriptedBackend()
    queue = _queue(backend)
    ids = [queue.enqueue("update_todo", {"name": name}) for name in "ABC"]

    result = asyncio.run(queue.drain_once())

    assert backend.calls == ["A", "B", "C"]
    assert result.succeeded == ids
    assert result.requeued == [] and result.quarantined == []
    assert queue.size() == 0


def test_retryable_failure_is_quarantined_after_exactly_three_drains():
    backend = ScriptedBackend({"A": [ServerError("boom") for _ in range(10)]})
    queue = _queue(backend)
    action_id = queue.enqueue("update_todo", {"name": "A"})

    async def scenario():
        outcomes = []
        for _ in range(4):
            outcomes.append(await queue.drain_once())
        return outcomes

    first, second, third, fourth = asyncio.run(scenario())

    assert first.requeued == [action_id]
    assert second.requeued == [action_id]
    assert third.quarantined == [action_id]
    assert fourth.empty
    assert queue.size() == 0
    failed = queue.failed()
    assert [a.id for a in failed] == [action_id]
    assert failed[0].retries == 3
    assert failed[0].error == "boom"


def test_requeued_action_records_retries_and_error():
    backend = ScriptedBackend({"A": [ServerError("503 upstream")]})
    queue = _queue(backend)
    queue.enqueue("update_todo", {"name": "A"})

    asyncio.run(queue.drain_once())

    action = queue.list()[0]
    assert action.retries == 1
    assert action.error == "503 upstream"


def test_validation_failure_is_quarantined_after_one_drain():
    backend = ScriptedBackend({"A": [ValidationFailed("title is required")]})
    queue = _queue(backend)
    action_id = queue.enqueue("create_invoice", {"name": "A"})
    queue.backend.register("create_invoice", backend)

    result = asyncio.run(queue.drain_once())

    assert result.quarantined == [action_id]
    failed = queue.failed()[0]
    assert failed.retries >= 3
    assert failed.error == "title is required"


def test_unknown_action_type_is_quarantined():
    queue = _queue(ScriptedBackend())
    action_id = queue.enqueue("delete_everything", {"name": "A"})

    result = asyncio.run(queue.drain_once())

    assert result.quarantined == [action_id]
    assert "delete_everything" in queue.failed()[0].error


def test_going_offline_mid_drain_leaves_remaining_actions_untouched():
    backend = ScriptedBackend({"B": [NetworkUnavailable("offline")]})
    queue = _queue(backend)
    a, b, c = (queue.enqueue("update_todo", {"name": name}) for name in "ABC")

    result = asyncio.run(queue.drain_once())

    assert result.succeeded == [a]
    assert backend.calls == ["A", "B"]
    remaining = queue.list()
    assert [x.id for x in remaining] == [b, c]
    assert all(x.retries == 0 and x.error is None for x in remaining)


def test_transport_errors_from_handlers_count_as_offline():
    backend = ScriptedBackend({"A": [ConnectionResetError("reset")]})
    queue = _queue(backend)
    queue.enqueue("update_todo", {"name": "A"})

    result = asyncio.run(queue.drain_once())

    assert result.empty
    assert queue.list()[0].retries == 0


def test_actions_enqueued_during_a_drain_wait_for_the_next_one():
    backend = ScriptedBackend()
    queue = _queue(backend)
    queue.enqueue("update_todo", {"name": "A"})
    late_ids = []

    def enqueue_while_replaying(name):
        if name == "A":
            late_ids.append(queue.enqueue("update_todo", {"name": "late"}))

    backend.on_call = enqueue_while_replaying

    result = asyncio.run(queue.drain_once())

    assert backend.calls == ["A"]
    assert len(result.succeeded) == 1
    assert [a.id for a in queue.list()] == late_ids


def test_concurrent_drain_is_a_noop():
    gate = {}
    calls = []

    async def slow_handler(payload):
        calls.append(payload["name"])
        await gate["event"].wait()

    queue = OfflineWriteQueue(MemoryKeyValueStore(), BackendRegistry({"update_todo": slow_handler}))
    action_id = queue.enqueue("update_todo", {"name": "A"})

    async def scenario():
        gate["event"] = asyncio.Event()
        first = asyncio.ensure_future(queue.drain_once())
        await asyncio.sleep(0)
        assert queue.draining
        second = await queue.drain_once()
        gate["event"].set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second.empty
    assert first.succeeded == [action_id]
    assert calls == ["A"]


def test_size_tracks_enqueues_minus_removals():
    backend = ScriptedBackend(
        {
            "B": [ServerError("x"), ServerError("x"), ServerError("x")],
            "C": [ValidationFailed("bad")],
        }
    )
    queue = _queue(backend)
    enqueued = removed = 0

    async def scenario():
        nonlocal enqueued, removed
        for name in "ABC":
            queue.enqueue("update_todo", {"name": name})
            enqueued += 1
            assert queue.size() == enqueued - removed
        for _ in range(3):
            result = await queue.drain_once()
            removed += len(result.succeeded) + len(result.quarantined)
            assert queue.size() == enqueued - removed
            queue.enqueue("update_todo", {"name": "D"})
            enqueued += 1
            assert queue.size() == enqueued - removed

    asyncio.run(scenario())


def test_auth_failure_refreshes_and_replays_without_a_strike():
    backend = ScriptedBackend({"A": [AuthInvalid("expired")]})
    refreshes = []

    async def auth_handler():
        refreshes.append(True)
        return "new-token"

    queue = _queue(backend, auth_handler=auth_handler)
    action_id = queue.enqueue("update_todo", {"name": "A"})

    result = asyncio.run(queue.drain_once())

    assert result.succeeded == [action_id]
    assert backend.calls == ["A", "A"]
    assert refreshes == [True]


def test_auth_failure_after_logout_stops_the_drain():
    backend = ScriptedBackend({"A": [AuthInvalid("expired")]})

    async def auth_handler():
        return None

    queue = _queue(backend, auth_handler=auth_handler)
    queue.enqueue("update_todo", {"name": "A"})
    queue.enqueue("update_todo", {"name": "B"})

    result = asyncio.run(queue.drain_once())

    assert result.empty
    assert backend.calls == ["A"]
    assert [a.retries for a in queue.list()] == [0, 0]


def test_replay_one_is_deferred_while_draining():
    queue = _queue(ScriptedBackend())
    action_id = queue.enqueue("update_todo", {"name": "A"})
    queue._busy = True

    outcome = asyncio.run(queue.replay_one(action_id))

    assert outcome is ReplayOutcome.DEFERRED
    assert queue.size() == 1


def test_queue_and_quarantine_survive_restart():
    store = MemoryKeyValueStore()
    backend = ScriptedBackend({"B": [ValidationFailed("bad")]})
    queue = _queue(backend, store)
    queue.enqueue("update_todo", {"name": "A"})
    b = queue.enqueue("update_todo", {"name": "B"})
    asyncio.run(queue.drain_once())
    c = queue.enqueue("update_todo", {"name": "C"})

    reloaded = _queue(ScriptedBackend(), store)

    assert [a.id for a in reloaded.list()] == [c]
    assert [a.id for a in reloaded.failed()] == [b]


def test_remove_drops_pending_action():
    store = MemoryKeyValueStore()
    queue = _queue(ScriptedBackend(), store)
    a = queue.enqueue("update_todo", {"name": "A"})
    b = queue.enqueue("update_todo", {"name": "B"})

    assert queue.remove(a) is True
    assert queue.remove(a) is False
    assert [x["id"] for x in store.get(STORAGE_KEYS.offline_queue)] == [b]


def test_remove_is_refused_while_the_action_is_replaying():
    backend = ScriptedBackend()
    queue = _queue(backend)
    a = queue.enqueue("update_todo", {"name": "A"})
    b = queue.enqueue("update_todo", {"name": "B"})
    refused = []

    def remove_during_replay(name):
        refused.append(queue.remove(a if name == "A" else b))

    backend.on_call = remove_during_replay

    result = asyncio.run(queue.drain_once())

    assert refused == [False, False]
    assert result.succeeded == [a, b]
    assert queue.size() == 0


def test_completion_tolerates_action_already_gone():
    queue = _queue(ScriptedBackend())
    action_id = queue.enqueue("update_todo", {"name": "A"})
    action = queue._find_pending(action_id)
    queue._pending.remove(action)

    queue._complete(action)
    outcome = queue._record_failure(action, ServerError("x"), True)

    assert outcome is ReplayOutcome.MISSING
    assert queue.size() == 0 and queue.failed() == []


def test_unserialisable_payload_does_not_block_persistence():
    from datetime import date

    store = MemoryKeyValueStore()
    queue = _queue(ScriptedBackend(), store)
    dated = queue.enqueue("update_todo", {"name": "A", "when": date(2024, 1, 1)})
    good = queue.enqueue("update_todo", {"name": "ok"})

    reloaded = _queue(ScriptedBackend(), store)

    assert [a.id for a in reloaded.list()] == [dated, good]
    assert reloaded.list()[0].payload == {"name": "A", "when": "2024-01-01"}
