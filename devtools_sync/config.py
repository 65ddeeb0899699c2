from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CDP_HTTP = "http://127.0.0.1:9222"
DEFAULT_SCRIPT_FILE = "discord-server-title-daily-timer.user.js"
DEFAULT_READY_DELAY = 0.4


def _env_float(name: str, default: float | None) -> float | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SyncConfig:
    cdp_http: str = DEFAULT_CDP_HTTP
    target_hint: str = ""
    http_timeout: float = 10.0
    http_max_bytes: int = 1_000_000
    open_timeout: float | None = 10.0
    # None waits for the remote page indefinitely.
    call_timeout: float | None = None
    ready_delay: float = DEFAULT_READY_DELAY
    verify: bool = False

    @property
    def list_url(self) -> str:
        base = (self.cdp_http or "").strip()
        if base.endswith("/"):
            base = base[:-1]
        return f"{base}/json/list"

    @classmethod
    def from_env(cls) -> SyncConfig:
        cdp_http = (os.environ.get("DEVTOOLS_SYNC_CDP_HTTP") or "").strip() or DEFAULT_CDP_HTTP
        try:
            max_bytes = int(os.environ.get("DEVTOOLS_SYNC_HTTP_MAX_BYTES", "1000000"))
        except ValueError:
            max_bytes = 1_000_000
        return cls(
            cdp_http=cdp_http,
            target_hint=os.environ.get("DEVTOOLS_SYNC_TARGET", ""),
            http_timeout=_env_float("DEVTOOLS_SYNC_HTTP_TIMEOUT", 10.0) or 10.0,
            http_max_bytes=max_bytes,
            open_timeout=_env_float("DEVTOOLS_SYNC_OPEN_TIMEOUT", 10.0),
            call_timeout=_env_float("DEVTOOLS_SYNC_CALL_TIMEOUT", None),
            verify=_env_flag("DEVTOOLS_SYNC_VERIFY"),
        )
