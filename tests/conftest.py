import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep the sqlite file and the sync log out of the real user data dir
os.environ.setdefault("ASAGENTS_DATA_DIR", tempfile.mkdtemp(prefix="asagents-tests-"))

from services.backend import BackendRegistry, RefreshResult  # noqa: E402
from services.tokens import issue_token, signer_from_pem  # noqa: E402
from storage.kv_store import MemoryKeyValueStore  # noqa: E402


FIXTURES = Path(__file__).resolve().parent / "fixtures"
START = 1_700_000_000.0


class FakeTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Deterministic stand-in for ``LoopClock``; timers fire only on ``advance``."""

    def __init__(self, start=START):
        self.now = start
        self.timers = []

    def time(self):
        return self.now

    def call_later(self, delay, callback):
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.active if t.when <= target), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target


class ScriptedBackend:
    """Backend handler whose outcome per ``payload["name"]`` is scripted.

    Each script entry is either ``None`` (success) or an exception to raise;
    once a script runs out every call succeeds.
    """

    def __init__(self, scripts=None):
        self.scripts = {name: list(steps) for name, steps in (scripts or {}).items()}
        self.calls = []
        self.on_call = None

    async def __call__(self, payload):
        name = payload["name"]
        self.calls.append(name)
        if self.on_call is not None:
            self.on_call(name)
        script = self.scripts.get(name) or []
        outcome = script.pop(0) if script else None
        if isinstance(outcome, BaseException):
            raise outcome
        return {"ok": name}

    def registry(self, *types):
        return BackendRegistry({t: self for t in (types or ("update_todo",))})


class FakeAuthBackend:
    def __init__(self, signer, clock, lifetime=900):
        self.signer = signer
        self.clock = clock
        self.lifetime = lifetime
        self.refresh_calls = []
        self.identify_calls = []
        self.refresh_error = None
        self.identify_error = None
        self.rotate = False
        self.gate = None

    async def identify(self, access_token):
        self.identify_calls.append(access_token)
        if self.identify_error is not None:
            raise self.identify_error
        return {"sub": "user-1"}

    async def refresh(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.gate is not None:
            await self.gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        n = len(self.refresh_calls)
        token = issue_token(self.signer, {"sub": "user-1", "n": n}, self.lifetime, now=self.clock.time())
        return RefreshResult(token, f"refresh-{n}" if self.rotate else None)


async def settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def signing_cert():
    return (FIXTURES / "signing_cert.pem").read_text(encoding="utf-8")


@pytest.fixture(scope="session")
def signer():
    return signer_from_pem((FIXTURES / "signing_key.pem").read_text(encoding="utf-8"))


@pytest.fixture(scope="session")
def foreign_signer():
    return signer_from_pem((FIXTURES / "other_key.pem").read_text(encoding="utf-8"))


@pytest.fixture
def make_token(signer, clock):
    def _make(expires_in, **claims):
        claims.setdefault("sub", "user-1")
        return issue_token(signer, claims, expires_in, now=clock.time())

    return _make
