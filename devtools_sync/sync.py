"""Run orchestration: find the editor tab, push the script, save it."""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from .config import SyncConfig
from .errors import InjectionFailed, NoTargetFound, RemoteCallError, VerifyFailed
from .inject import InjectionOutcome, build_inject_expression, build_readback_expression, parse_outcome
from .session_cdp import CdpSession
from .targets import TargetDescriptor, list_targets, select_target

logger = logging.getLogger("devtools_sync.sync")


@dataclass(frozen=True)
class SyncReport:
    target: TargetDescriptor
    outcome: InjectionOutcome
    verified: bool | None = None

    @property
    def title(self) -> str:
        return self.outcome.title or self.target.title

    @property
    def url(self) -> str:
        return self.outcome.url or self.target.url


@contextmanager
def open_session(target: TargetDescriptor, config: SyncConfig) -> Generator[CdpSession, None, None]:
    """Open the target's control channel; it is closed however the block exits."""
    session = CdpSession(target.control_address or "", open_timeout=config.open_timeout)
    try:
        session.open()
        yield session
    finally:
        session.close()


def runtime_eval(session: CdpSession, expression: str, config: SyncConfig) -> Any:
    """Evaluate `expression` in the page and return its JSON value (None for undefined/null)."""
    result = session.send(
        "Runtime.evaluate",
        {
            "expression": expression,
            "awaitPromise": True,
            "returnByValue": True,
        },
        timeout=config.call_timeout,
    )
    if not isinstance(result, dict):
        return None
    details = result.get("exceptionDetails")
    if isinstance(details, dict):
        exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
        text = exc.get("description") or details.get("text") or "Uncaught exception"
        raise RemoteCallError(f"Runtime.evaluate threw: {text}", details={"exceptionDetails": details})
    value = result.get("result")
    if not isinstance(value, dict):
        return None
    return value.get("value")


def prepare_page(session: CdpSession, target: TargetDescriptor, config: SyncConfig) -> None:
    session.send("Page.enable", timeout=config.call_timeout)
    session.send("Runtime.enable", timeout=config.call_timeout)
    try:
        session.send("Target.activateTarget", {"targetId": target.id}, timeout=config.call_timeout)
    except RemoteCallError as exc:
        # Bringing the tab to front is cosmetic; page sessions may not expose Target.
        logger.warning("Target.activateTarget failed for %s: %s", target.id, exc)

    ready_state = runtime_eval(session, "document.readyState", config)
    if ready_state == "loading":
        logger.debug("page still loading, waiting %.2fs", config.ready_delay)
        time.sleep(config.ready_delay)


def _normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n")


def verify_injection(session: CdpSession, outcome: InjectionOutcome, source: str, config: SyncConfig) -> bool:
    if outcome.backend is None:
        raise VerifyFailed(
            "Editor backend unknown, cannot read the script back",
            suggestion="Re-run without --verify or report the editor page",
        )
    current = runtime_eval(session, build_readback_expression(outcome.backend), config)
    if not isinstance(current, str) or _normalize_text(current) != _normalize_text(source):
        raise VerifyFailed(
            f"Editor content does not match the pushed script after save ({outcome.backend})",
            suggestion="Check the editor tab for a conflicting reload or a rejected save",
            details={"expected_len": len(source), "actual_len": len(current) if isinstance(current, str) else None},
        )
    return True


def sync_script(config: SyncConfig, source: str) -> SyncReport:
    """Push `source` into the best-matching editor tab and trigger a save."""
    targets = list_targets(config)
    target = select_target(targets, config.target_hint)
    if target is None:
        raise NoTargetFound(
            "Could not find a Tampermonkey editor tab",
            suggestion="Open the Tampermonkey editor and try again",
            details={"targets": len(targets)},
        )
    logger.info("selected target %s (%s)", target.id, target.url)

    with open_session(target, config) as session:
        prepare_page(session, target, config)
        value = runtime_eval(session, build_inject_expression(source.encode("utf-8")), config)
        outcome = parse_outcome(value)
        if not outcome.ok:
            raise InjectionFailed(
                "Could not find a supported editor in the selected tab (Monaco/CodeMirror/textarea)",
                details={"skipped": list(outcome.skipped), "url": outcome.url},
            )
        logger.info("injected via %s, save=%s", outcome.backend, outcome.save_method)

        verified = None
        if config.verify:
            verified = verify_injection(session, outcome, source, config)

    return SyncReport(target=target, outcome=outcome, verified=verified)


__all__ = ["SyncReport", "open_session", "prepare_page", "runtime_eval", "sync_script", "verify_injection"]
