"""Programs evaluated inside the editor page.

The injection program tries three editor surfaces in a fixed order and stops at
the first one it can drive unambiguously:

1. Monaco      (window.monaco.editor models)
2. CodeMirror  (.CodeMirror host elements)
3. <textarea>  (only when there is exactly one, visible and writable)

Each probe answers "applied", "absent" or "ambiguous". After a successful write
the program tries to persist: click a visible save control, otherwise fire the
two usual save chords at the document. The keyboard path cannot be confirmed
from outside the page.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any

EDITOR_BACKENDS: tuple[str, ...] = ("monaco", "codemirror", "textarea")

SAVE_METHOD_BUTTON = "button"
SAVE_METHOD_KEYBOARD = "keyboard-shortcut"
SAVE_METHOD_NONE = "none"
SAVE_METHODS = frozenset({SAVE_METHOD_BUTTON, SAVE_METHOD_KEYBOARD, SAVE_METHOD_NONE})

# Tampermonkey's hashed save/update button ids first, then generic "Save" controls.
SAVE_SELECTORS: tuple[str, ...] = (
    "#input_c2F2ZV9idXR0b25fMmZlZDUzOTctNDg4NC00N2NhLWEzMmItYzExNjE5NmFkZjY0_bu",
    "#input_c2F2ZV91cGRhdGVfYnV0dG9uXzJmZWQ1Mzk3LTQ4ODQtNDdjYS1hMzJiLWMxMTYxOTZhZGY2NA_bu",
    '[title*="Save"]',
    '[aria-label*="Save"]',
    ".save",
    "#save",
    ".script-save",
)

_EDITOR_HELPERS_JS = r"""
  const __isRendered = (el) => {
    if (!el) return false;
    if (el.offsetParent !== null && el.offsetParent !== undefined) return true;
    try {
      return typeof el.getClientRects === 'function' && el.getClientRects().length > 0;
    } catch (_e) {
      return false;
    }
  };

  const __valueLength = (source) => {
    try {
      const value = source.getValue();
      return typeof value === 'string' ? value.length : 0;
    } catch (_e) {
      return 0;
    }
  };

  // Largest model wins (scratch buffers are usually smaller); ties keep the first one.
  const __pickMonacoModel = () => {
    const monaco = globalThis.monaco;
    if (!monaco || !monaco.editor || typeof monaco.editor.getModels !== 'function') return null;
    const models = monaco.editor.getModels();
    if (!Array.isArray(models)) return null;
    let target = null;
    let largest = -1;
    for (const model of models) {
      if (!model || typeof model.getValue !== 'function' || typeof model.setValue !== 'function') continue;
      const len = __valueLength(model);
      if (len > largest) {
        largest = len;
        target = model;
      }
    }
    return target;
  };

  const __pickCodeMirror = () => {
    const hosts = Array.from(document.querySelectorAll('.CodeMirror'));
    let target = null;
    let largest = -1;
    for (const host of hosts) {
      const cm = host && host.CodeMirror;
      if (!cm || typeof cm.getValue !== 'function' || typeof cm.setValue !== 'function') continue;
      let readOnly = false;
      if (typeof cm.getOption === 'function') {
        try {
          readOnly = Boolean(cm.getOption('readOnly'));
        } catch (_e) {
          readOnly = false;
        }
      }
      if (readOnly) continue;
      const len = __valueLength(cm);
      if (len > largest) {
        largest = len;
        target = cm;
      }
    }
    return target;
  };

  // Never guess between several text areas.
  const __pickTextarea = () => {
    const fields = Array.from(document.querySelectorAll('textarea'));
    if (fields.length === 0) return { status: 'absent', el: null };
    if (fields.length > 1) return { status: 'ambiguous', el: null };
    const el = fields[0];
    if (el.readOnly || el.disabled) return { status: 'absent', el: null };
    if (!__isRendered(el)) return { status: 'absent', el: null };
    return { status: 'found', el };
  };
"""

_INJECT_BODY_JS = r"""
  const __decode = (b64) => {
    const binary = atob(b64);
    if (typeof TextDecoder !== 'function') return binary;
    const bytes = new Uint8Array(binary.length);
    for (let i = 0; i < binary.length; i += 1) bytes[i] = binary.charCodeAt(i);
    return new TextDecoder('utf-8').decode(bytes);
  };

  const __setFieldValue = (el, code) => {
    // Native setter first so framework-controlled fields notice the change.
    try {
      const proto = Object.getPrototypeOf(el);
      const desc = proto ? Object.getOwnPropertyDescriptor(proto, 'value') : null;
      if (desc && typeof desc.set === 'function') {
        desc.set.call(el, code);
      } else {
        el.value = code;
      }
    } catch (_e) {
      el.value = code;
    }
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
  };

  const __probes = [
    ['monaco', (code) => {
      const model = __pickMonacoModel();
      if (!model) return 'absent';
      model.setValue(code);
      return 'applied';
    }],
    ['codemirror', (code) => {
      const cm = __pickCodeMirror();
      if (!cm) return 'absent';
      cm.setValue(code);
      return 'applied';
    }],
    ['textarea', (code) => {
      const pick = __pickTextarea();
      if (!pick.el) return pick.status;
      __setFieldValue(pick.el, code);
      return 'applied';
    }],
  ];

  const __triggerSave = () => {
    for (const selector of __saveSelectors) {
      let nodes = [];
      try {
        nodes = Array.from(document.querySelectorAll(selector));
      } catch (_e) {
        continue;
      }
      const button = nodes.find((node) => node && typeof node.click === 'function' && __isRendered(node));
      if (button) {
        button.click();
        return 'button';
      }
    }
    // The page's key binding cannot be introspected; send both platform chords.
    for (const chord of [{ ctrlKey: true }, { metaKey: true }]) {
      const init = Object.assign({ key: 's', code: 'KeyS', bubbles: true, cancelable: true }, chord);
      document.dispatchEvent(new KeyboardEvent('keydown', init));
    }
    return 'keyboard-shortcut';
  };

  const nextCode = __decode(__payload);
  const skipped = [];
  let backend = null;
  for (const [name, probe] of __probes) {
    let status = 'absent';
    try {
      status = probe(nextCode);
    } catch (_e) {
      status = 'error';
    }
    if (status === 'applied') {
      backend = name;
      break;
    }
    if (status !== 'absent') skipped.push(`${name}:${status}`);
  }

  const saveMethod = backend ? __triggerSave() : 'none';
  return {
    ok: backend !== null,
    saveMethod,
    backend,
    skipped,
    title: document.title,
    url: location.href,
  };
"""

_READBACK_BODY_JS = r"""
  if (__backend === 'monaco') {
    const model = __pickMonacoModel();
    return model ? model.getValue() : null;
  }
  if (__backend === 'codemirror') {
    const cm = __pickCodeMirror();
    return cm ? cm.getValue() : null;
  }
  if (__backend === 'textarea') {
    const pick = __pickTextarea();
    return pick.el ? pick.el.value : null;
  }
  return null;
"""


@dataclass(frozen=True)
class InjectionOutcome:
    ok: bool
    save_method: str = SAVE_METHOD_NONE
    title: str = ""
    url: str = ""
    backend: str | None = None
    skipped: tuple[str, ...] = ()

    @property
    def save_confirmed(self) -> bool:
        """Only a clicked save control counts; synthetic chords may go unheard."""
        return self.ok and self.save_method == SAVE_METHOD_BUTTON


def encode_payload(payload: bytes | str) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def build_inject_expression(payload: bytes | str) -> str:
    """Build the self-contained program that writes `payload` into the page's editor."""
    return f"""(() => {{
  const __payload = {json.dumps(encode_payload(payload))};
  const __saveSelectors = {json.dumps(list(SAVE_SELECTORS))};
{_EDITOR_HELPERS_JS}
{_INJECT_BODY_JS}
}})()"""


def build_readback_expression(backend: str) -> str:
    """Build a program returning the current text of `backend`'s selected surface."""
    if backend not in EDITOR_BACKENDS:
        raise ValueError(f"Unknown editor backend: {backend!r}")
    return f"""(() => {{
  const __backend = {json.dumps(backend)};
{_EDITOR_HELPERS_JS}
{_READBACK_BODY_JS}
}})()"""


def parse_outcome(value: Any) -> InjectionOutcome:
    """Interpret the returned value; anything unexpected reads as a failed injection."""
    if not isinstance(value, dict):
        return InjectionOutcome(ok=False)
    ok = value.get("ok") is True
    save_method = value.get("saveMethod")
    if save_method not in SAVE_METHODS or not ok:
        save_method = SAVE_METHOD_NONE
    backend = value.get("backend")
    skipped = value.get("skipped")
    return InjectionOutcome(
        ok=ok,
        save_method=save_method,
        title=value.get("title") if isinstance(value.get("title"), str) else "",
        url=value.get("url") if isinstance(value.get("url"), str) else "",
        backend=backend if backend in EDITOR_BACKENDS else None,
        skipped=tuple(str(s) for s in skipped) if isinstance(skipped, list) else (),
    )


__all__ = [
    "EDITOR_BACKENDS",
    "InjectionOutcome",
    "SAVE_METHODS",
    "SAVE_METHOD_BUTTON",
    "SAVE_METHOD_KEYBOARD",
    "SAVE_METHOD_NONE",
    "SAVE_SELECTORS",
    "build_inject_expression",
    "build_readback_expression",
    "encode_payload",
    "parse_outcome",
]
