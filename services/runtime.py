"""Wires the resilience layer together for the host application."""
from __future__ import annotations

from functools import partial
from typing import Optional

from core.logs import get_logger
from core.settings import SESSION
from services.backend import AuthBackend, BackendRegistry
from services.clock import Clock, LoopClock
from services.connectivity import ConnectivityMonitor, Probe, tcp_probe
from services.failed_actions import FailedActionStore
from services.offline_queue import OfflineWriteQueue
from services.session_store import SessionStore
from services.sync_engine import SyncEngine
from services.token_lifecycle import TokenLifecycleManager
from services.tokens import TokenDecoder, load_certs
from storage.config import AppConfig, load_config
from storage.kv_store import KeyValueStore, SqlKeyValueStore


class ResilienceRuntime:
    def __init__(
        self,
        backend: BackendRegistry,
        auth: AuthBackend,
        *,
        store: Optional[KeyValueStore] = None,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
        probe: Optional[Probe] = None,
        decoder: Optional[TokenDecoder] = None,
    ):
        self.config = config or load_config()
        self.logger = get_logger("runtime")
        if store is None:
            from storage.db import init_db

            init_db()
            store = SqlKeyValueStore()
        self.store = store
        self.clock = clock or LoopClock()

        if decoder is None:
            certs = load_certs(self.config.token_certs_path) if SESSION.verify_signatures else None
            if SESSION.verify_signatures and not certs:
                self.logger.warning("No token certificates configured; token signatures are not verified")
            decoder = TokenDecoder(certs)

        self.sessions = SessionStore(store, decoder)
        self.session = TokenLifecycleManager(self.sessions, auth, self.clock)
        self.queue = OfflineWriteQueue(store, backend, auth_handler=self.session.handle_auth_failure)
        self.failed = FailedActionStore(self.queue)
        self.sync = SyncEngine(self.queue, session=self.session)
        self.monitor = ConnectivityMonitor(
            probe
            or partial(tcp_probe, self.config.probe_host, self.config.probe_port),
            interval_sec=self.config.probe_interval_sec,
        )
        self.monitor.add_listener(self.sync.on_connectivity_change)

    async def start(self) -> None:
        """App start: resume the session, drain leftovers, then watch connectivity."""

        online = await self.monitor.check()
        await self.session.start()
        await self.sync.start(online)
        self.monitor.start()
        self.logger.info(
            "Runtime started (%s, session %s, %s pending, %s failed)",
            "online" if online else "offline",
            self.session.state.value,
            self.queue.size(),
            self.failed.count(),
        )

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.session.close()


__all__ = ["ResilienceRuntime"]
