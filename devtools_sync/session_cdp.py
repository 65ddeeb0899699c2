"""CDP control channel.

One WebSocket per target, multiplexed into request/response calls:
- ids start at 1 and are never reused
- inbound responses are routed to the pending future with the same id
- anything without a pending id (CDP events, late replies) is dropped
- when the socket closes every pending future fails with SessionClosed

websocket-client runs the socket on its own daemon thread and delivers
open/message/error/close callbacks there, so the pending table is guarded by
one lock. Futures are always resolved outside the lock.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import suppress
from typing import Any

from .errors import OpenFailed, RemoteCallError, SessionClosed

logger = logging.getLogger("devtools_sync.session")

STATE_NEW = "new"
STATE_CONNECTING = "connecting"
STATE_OPEN = "open"
STATE_CLOSED = "closed"


def _import_websocket():
    """Import websocket-client with an actionable error."""
    try:
        import websocket

        return websocket
    except ImportError as exc:
        raise OpenFailed(
            "devtools-sync requires the 'websocket-client' package",
            suggestion="pip install websocket-client",
        ) from exc


def _settle(fut: Future, *, result: Any = None, error: BaseException | None = None) -> None:
    # A caller may have cancelled its future; the table entry is gone either way.
    if fut.done():
        return
    with suppress(InvalidStateError):
        if error is not None:
            fut.set_exception(error)
        else:
            fut.set_result(result)


class CdpSession:
    """Multiplexed CDP connection to a single page target."""

    def __init__(self, address: str, *, open_timeout: float | None = None) -> None:
        self.address = address
        self.open_timeout = open_timeout
        self._lock = threading.Lock()
        self._state = STATE_NEW
        self._next_id = 1
        self._pending: dict[int, Future] = {}
        self._opened: Future | None = None
        self._app: Any | None = None
        self._thread: threading.Thread | None = None
        self._last_error: str | None = None

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def __enter__(self) -> CdpSession:
        if self.state == STATE_NEW:
            self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def open(self) -> None:
        """Connect and block until the socket is ready, or raise OpenFailed."""
        websocket = _import_websocket()
        with self._lock:
            if self._state == STATE_CLOSED:
                raise SessionClosed("CDP session is closed")
            if self._state != STATE_NEW:
                raise OpenFailed(f"CDP session already {self._state}")
            self._state = STATE_CONNECTING
            opened: Future = Future()
            self._opened = opened

        app = websocket.WebSocketApp(
            self.address,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        with self._lock:
            self._app = app

        thread = threading.Thread(target=self._run, args=(app,), name="devtools-sync-cdp", daemon=True)
        self._thread = thread
        thread.start()

        try:
            opened.result(timeout=self.open_timeout)
        except FutureTimeoutError as exc:
            self.close()
            raise OpenFailed(f"Timed out opening CDP socket: {self.address}") from exc
        except OpenFailed:
            self.close()
            raise
        logger.debug("cdp socket open: %s", self.address)

    def close(self) -> None:
        """Close the socket and fail anything still pending. Safe to call repeatedly."""
        self._shutdown("CDP socket closed", close_transport=True)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _run(self, app: Any) -> None:
        try:
            # Chrome refuses handshakes carrying an Origin unless --remote-allow-origins is set.
            app.run_forever(suppress_origin=True)
        except Exception as exc:  # noqa: BLE001
            self._last_error = str(exc)
            logger.debug("cdp socket loop crashed: %s", exc)
        finally:
            self._shutdown(self._close_reason(), close_transport=False)

    def _close_reason(self) -> str:
        if self._last_error:
            return f"CDP socket closed: {self._last_error}"
        return "CDP socket closed"

    def _shutdown(self, reason: str, *, close_transport: bool) -> None:
        with self._lock:
            was_closed = self._state == STATE_CLOSED
            self._state = STATE_CLOSED
            app = self._app
            opened, self._opened = self._opened, None
            pending = list(self._pending.items())
            self._pending.clear()

        if opened is not None:
            _settle(opened, error=OpenFailed(f"Failed to open CDP socket: {self._last_error or reason}"))
        for req_id, fut in pending:
            logger.debug("failing pending call id=%s: %s", req_id, reason)
            _settle(fut, error=SessionClosed(reason))
        if close_transport and not was_closed and app is not None:
            with suppress(Exception):
                app.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Transport callbacks
    # ─────────────────────────────────────────────────────────────────────────

    def _on_open(self, _ws: Any) -> None:
        with self._lock:
            opened, self._opened = self._opened, None
            if opened is not None:
                self._state = STATE_OPEN
        if opened is not None:
            _settle(opened, result=None)

    def _on_error(self, _ws: Any, error: Any) -> None:
        message = str(getattr(error, "message", None) or error or "unknown error")
        self._last_error = message
        with self._lock:
            opened, self._opened = self._opened, None
        if opened is not None:
            _settle(opened, error=OpenFailed(f"Failed to open CDP socket: {message}"))
            return
        logger.warning("cdp socket error: %s", message)

    def _on_close(self, _ws: Any, code: Any = None, msg: Any = None) -> None:
        logger.debug("cdp socket closed code=%s msg=%s", code, msg)
        self._shutdown(self._close_reason(), close_transport=False)

    def _on_message(self, _ws: Any, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("dropping non-JSON frame")
            return
        if not isinstance(data, dict):
            return

        msg_id = data.get("id")
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            # CDP event (or something we never asked for).
            return
        with self._lock:
            fut = self._pending.pop(msg_id, None)
        if fut is None:
            logger.debug("dropping response for unknown id=%s", msg_id)
            return

        if "error" in data:
            err = data.get("error")
            message = err.get("message") if isinstance(err, dict) else None
            _settle(fut, error=RemoteCallError(str(message or "Unknown CDP error"), details={"error": err}))
            return
        result = data.get("result")
        _settle(fut, result=result if result is not None else {})

    # ─────────────────────────────────────────────────────────────────────────
    # Calls
    # ─────────────────────────────────────────────────────────────────────────

    def call(self, method: str, params: dict[str, Any] | None = None) -> Future:
        """Issue a CDP command; the returned future resolves with its `result`."""
        fut: Future = Future()
        with self._lock:
            if self._state != STATE_OPEN:
                state = self._state
                app = None
            else:
                state = STATE_OPEN
                app = self._app
                msg_id = self._next_id
                self._next_id += 1
                self._pending[msg_id] = fut
        if app is None:
            reason = "CDP session is closed" if state == STATE_CLOSED else f"CDP session is not open ({state})"
            _settle(fut, error=SessionClosed(reason))
            return fut

        msg = {"id": msg_id, "method": method, "params": params or {}}
        try:
            app.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                removed = self._pending.pop(msg_id, None)
            if removed is not None:
                _settle(removed, error=SessionClosed(f"CDP send failed: {exc}"))
            return fut
        logger.debug("cdp send id=%d method=%s", msg_id, method)
        return fut

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Send a CDP command and wait for its result (forever when timeout is None)."""
        fut = self.call(method, params)
        try:
            return fut.result(timeout=timeout)
        except FutureTimeoutError as exc:
            with self._lock:
                for req_id, pending in list(self._pending.items()):
                    if pending is fut:
                        del self._pending[req_id]
            fut.cancel()
            raise RemoteCallError(f"CDP response timed out: {method}") from exc


__all__ = ["CdpSession", "STATE_CLOSED", "STATE_CONNECTING", "STATE_NEW", "STATE_OPEN"]
