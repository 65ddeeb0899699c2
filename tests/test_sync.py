from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from devtools_sync import main as main_module
from devtools_sync import sync as sync_module
from devtools_sync.config import SyncConfig
from devtools_sync.errors import (
    InjectionFailed,
    NoTargetFound,
    OpenFailed,
    RemoteCallError,
    VerifyFailed,
)
from devtools_sync.inject import InjectionOutcome
from devtools_sync.sync import SyncReport, sync_script
from devtools_sync.targets import TargetDescriptor

EDITOR = TargetDescriptor(
    id="t1",
    kind="page",
    url="chrome-extension://abc/options.html#editor",
    title="Tampermonkey - Editor",
    control_address="ws://127.0.0.1:9222/devtools/page/t1",
)
OTHER = TargetDescriptor(id="t0", kind="page", url="https://news.example", title="News", control_address="ws://y")

OK_OUTCOME = {
    "ok": True,
    "saveMethod": "button",
    "backend": "codemirror",
    "skipped": [],
    "title": "Tampermonkey - Editor: my.user.js",
    "url": "chrome-extension://abc/options.html#nav=abc+editor",
}


class DummySession:
    instances: list[DummySession] = []
    open_error: Exception | None = None
    ready_state = "complete"
    outcome: Any = OK_OUTCOME
    readback: Any = None
    failing: dict[str, Exception] = {}

    def __init__(self, address: str, *, open_timeout: float | None = None) -> None:
        self.address = address
        self.open_timeout = open_timeout
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.closed = 0
        DummySession.instances.append(self)

    def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error

    def close(self) -> None:
        self.closed += 1

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:  # noqa: ARG002
        self.calls.append((method, params))
        if method in self.failing:
            raise self.failing[method]
        if method != "Runtime.evaluate":
            return {}
        expression = (params or {}).get("expression", "")
        if expression == "document.readyState":
            return {"result": {"type": "string", "value": self.ready_state}}
        if "const __backend" in expression:
            return {"result": {"type": "string", "value": self.readback}}
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if isinstance(self.outcome, dict) and "exceptionDetails" in self.outcome:
            return self.outcome
        return {"result": {"type": "object", "value": self.outcome}}


@pytest.fixture()
def dummy_session(monkeypatch: pytest.MonkeyPatch) -> type[DummySession]:
    DummySession.instances = []
    DummySession.open_error = None
    DummySession.ready_state = "complete"
    DummySession.outcome = OK_OUTCOME
    DummySession.readback = None
    DummySession.failing = {}
    monkeypatch.setattr(sync_module, "CdpSession", DummySession)
    monkeypatch.setattr(sync_module, "list_targets", lambda _cfg: [OTHER, EDITOR])
    return DummySession


def test_sync_script_runs_protocol_steps_in_order(dummy_session: type[DummySession]) -> None:
    report = sync_script(SyncConfig(), "// script")

    sess = dummy_session.instances[-1]
    assert sess.address == EDITOR.control_address
    assert [m for m, _ in sess.calls] == [
        "Page.enable",
        "Runtime.enable",
        "Target.activateTarget",
        "Runtime.evaluate",
        "Runtime.evaluate",
    ]
    assert sess.calls[2][1] == {"targetId": "t1"}
    inject_params = sess.calls[4][1] or {}
    assert inject_params["awaitPromise"] is True
    assert inject_params["returnByValue"] is True
    assert sess.closed == 1

    assert report.target is EDITOR
    assert report.outcome.save_method == "button"
    assert report.outcome.backend == "codemirror"
    assert report.title == "Tampermonkey - Editor: my.user.js"
    assert report.verified is None


def test_no_target_fails_before_connecting(dummy_session: type[DummySession], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sync_module, "list_targets", lambda _cfg: [OTHER])
    with pytest.raises(NoTargetFound):
        sync_script(SyncConfig(), "x")
    assert dummy_session.instances == []


def test_hint_from_config_drives_selection(dummy_session: type[DummySession]) -> None:
    sync_script(SyncConfig(target_hint="news"), "x")
    assert dummy_session.instances[-1].address == "ws://y"


def test_injection_failure_still_closes_session(dummy_session: type[DummySession]) -> None:
    dummy_session.outcome = {"ok": False, "saveMethod": "none", "skipped": ["textarea:ambiguous"]}
    with pytest.raises(InjectionFailed) as exc:
        sync_script(SyncConfig(), "x")
    assert exc.value.details["skipped"] == ["textarea:ambiguous"]
    assert dummy_session.instances[-1].closed == 1


def test_open_failure_is_fatal_and_closes(dummy_session: type[DummySession]) -> None:
    dummy_session.open_error = OpenFailed("Failed to open CDP socket: refused")
    with pytest.raises(OpenFailed):
        sync_script(SyncConfig(), "x")
    assert dummy_session.instances[-1].closed == 1
    assert dummy_session.instances[-1].calls == []


def test_activate_target_errors_are_tolerated(dummy_session: type[DummySession]) -> None:
    dummy_session.failing = {"Target.activateTarget": RemoteCallError("'Target.activateTarget' wasn't found")}
    report = sync_script(SyncConfig(), "x")
    assert report.outcome.ok


def test_enable_errors_are_fatal(dummy_session: type[DummySession]) -> None:
    dummy_session.failing = {"Runtime.enable": RemoteCallError("nope")}
    with pytest.raises(RemoteCallError):
        sync_script(SyncConfig(), "x")
    assert dummy_session.instances[-1].closed == 1


def test_loading_page_gets_a_short_delay(dummy_session: type[DummySession], monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(sync_module.time, "sleep", lambda s: sleeps.append(s))
    dummy_session.ready_state = "loading"
    sync_script(SyncConfig(), "x")
    assert sleeps == [0.4]

    sleeps.clear()
    dummy_session.ready_state = "interactive"
    sync_script(SyncConfig(), "x")
    assert sleeps == []


def test_exception_in_page_is_a_remote_error(dummy_session: type[DummySession]) -> None:
    dummy_session.outcome = {
        "result": {"type": "object", "subtype": "error"},
        "exceptionDetails": {"text": "Uncaught", "exception": {"description": "TypeError: boom"}},
    }
    with pytest.raises(RemoteCallError, match="TypeError: boom"):
        sync_script(SyncConfig(), "x")


def test_verify_reads_the_editor_back(dummy_session: type[DummySession]) -> None:
    dummy_session.readback = "line1\r\nline2"
    report = sync_script(SyncConfig(verify=True), "line1\nline2")
    assert report.verified is True
    assert len(dummy_session.instances[-1].calls) == 6

    dummy_session.readback = "stale"
    with pytest.raises(VerifyFailed):
        sync_script(SyncConfig(verify=True), "line1\nline2")
    assert dummy_session.instances[-1].closed == 1


def test_verify_with_unknown_backend_fails_instead_of_passing(dummy_session: type[DummySession]) -> None:
    dummy_session.outcome = {**OK_OUTCOME, "backend": "ace"}
    with pytest.raises(VerifyFailed) as exc:
        sync_script(SyncConfig(verify=True), "x")
    assert "backend unknown" in exc.value.reason
    sess = dummy_session.instances[-1]
    assert sess.closed == 1
    # No readback program is sent when the surface is unknown.
    assert len(sess.calls) == 5


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


def _report(save_method: str = "button") -> SyncReport:
    outcome = InjectionOutcome(ok=True, save_method=save_method, title="TM Editor", url="chrome-extension://abc/x")
    return SyncReport(target=EDITOR, outcome=outcome)


def test_main_success_prints_summary(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    script = tmp_path / "my.user.js"
    script.write_text("// hello ✓", encoding="utf-8")
    seen: dict[str, Any] = {}

    def fake_sync(cfg: SyncConfig, source: str) -> SyncReport:
        seen["cfg"] = cfg
        seen["source"] = source
        return _report("keyboard-shortcut")

    monkeypatch.setattr(main_module, "sync_script", fake_sync)
    with pytest.raises(SystemExit) as exc:
        main_module.main(["-f", str(script), "--cdp-http", "http://127.0.0.1:9333/", "--target", "my.user"])
    assert exc.value.code == 0

    assert seen["source"] == "// hello ✓"
    assert seen["cfg"].cdp_http == "http://127.0.0.1:9333/"
    assert seen["cfg"].target_hint == "my.user"
    out = capsys.readouterr().out
    assert "Target tab: TM Editor" in out
    assert "Save strategy: keyboard-shortcut" in out
    assert "could not be confirmed" in out


def test_main_reports_failures_on_stderr(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    script = tmp_path / "a.user.js"
    script.write_text("x", encoding="utf-8")

    def fake_sync(_cfg: SyncConfig, _source: str) -> SyncReport:
        raise NoTargetFound("Could not find a Tampermonkey editor tab", suggestion="Open the Tampermonkey editor")

    monkeypatch.setattr(main_module, "sync_script", fake_sync)
    with pytest.raises(SystemExit) as exc:
        main_module.main(["--file", str(script)])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert err.startswith("devtools-sync failed: Could not find a Tampermonkey editor tab")


def test_main_missing_file_exits_1(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main_module.main(["--file", str(tmp_path / "missing.user.js")])
    assert exc.value.code == 1
    assert "devtools-sync failed" in capsys.readouterr().err


def test_main_list_prints_ranked_candidates(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(main_module, "list_targets", lambda _cfg: [OTHER, EDITOR])
    with pytest.raises(SystemExit) as exc:
        main_module.main(["--list"])
    assert exc.value.code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    assert "t1" in lines[0]
    assert lines[0].strip().startswith("12")


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVTOOLS_SYNC_CDP_HTTP", "http://10.0.0.2:9222/")
    monkeypatch.setenv("DEVTOOLS_SYNC_CALL_TIMEOUT", "7.5")
    monkeypatch.setenv("DEVTOOLS_SYNC_VERIFY", "1")
    monkeypatch.delenv("DEVTOOLS_SYNC_TARGET", raising=False)
    cfg = SyncConfig.from_env()
    assert cfg.list_url == "http://10.0.0.2:9222/json/list"
    assert cfg.call_timeout == 7.5
    assert cfg.verify is True
    assert cfg.target_hint == ""

    monkeypatch.delenv("DEVTOOLS_SYNC_CALL_TIMEOUT")
    assert SyncConfig.from_env().call_timeout is None
