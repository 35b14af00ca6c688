"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    if environ.get("ASAGENTS_DATA_DIR"):
        return Path(environ["ASAGENTS_DATA_DIR"]).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "ASAgents"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"
SECRETS_DIR = DATA_DIR / "secrets"

for _dir in (DATA_DIR, LOG_DIR, SECRETS_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "app.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"
TOKEN_CERTS_PATH = SECRETS_DIR / "token_certs.pem"


@dataclass(frozen=True)
class StorageKeys:
    offline_queue: str = "offline_queue"
    failed_actions: str = "failed_sync_actions"
    session: str = "session"


STORAGE_KEYS = StorageKeys()


@dataclass(frozen=True)
class SyncSettings:
    enabled: bool = True
    max_retries: int = 3
    error_max_length: int = 1000
    summary_payload_chars: int = 100


SYNC = SyncSettings()


@dataclass(frozen=True)
class SessionSettings:
    refresh_lead_sec: int = 60
    verify_signatures: bool = True


SESSION = SessionSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    probe_timeout_sec: float = 3.0
    interval_sec: int = 15


CONNECTIVITY = ConnectivitySettings()


@dataclass(frozen=True)
class LoggingSettings:
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


LOGGING = LoggingSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "SECRETS_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "TOKEN_CERTS_PATH",
    "STORAGE_KEYS",
    "SYNC",
    "SESSION",
    "CONNECTIVITY",
    "LOGGING",
    "get_default_data_dir",
]
