"""Target discovery and selection.

- list_targets: one GET of <cdp_http>/json/list -> TargetDescriptor list
- select_target: heuristic scoring that picks the Tampermonkey editor tab
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .config import SyncConfig
from .errors import ListMalformed, ListUnavailable
from .http_client import HttpClientError, http_get

logger = logging.getLogger("devtools_sync.targets")

TAMPERMONKEY_EXTENSION_ID = "dhdgffkkebhmkfjojejmpbldmpobfkfo"


@dataclass(frozen=True)
class TargetDescriptor:
    id: str
    kind: str
    url: str
    title: str
    control_address: str | None = None

    @property
    def controllable(self) -> bool:
        return self.kind == "page" and bool(self.control_address)

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> TargetDescriptor:
        def _text(key: str) -> str:
            value = raw.get(key)
            return value if isinstance(value, str) else ""

        address = raw.get("webSocketDebuggerUrl")
        return cls(
            id=_text("id"),
            kind=_text("type"),
            url=_text("url"),
            title=_text("title"),
            control_address=address if isinstance(address, str) and address else None,
        )


@dataclass(frozen=True)
class ScoredCandidate:
    target: TargetDescriptor
    score: int


@dataclass(frozen=True)
class SelectorWeights:
    """Scoring constants for picking the editor tab."""

    extension_origin: int = 2
    tool_name: int = 2
    extension_id: int = 4
    editor_in_url: int = 6
    editor_in_title: int = 2
    hint: int = 20
    origin_marker: str = "chrome-extension://"
    tool_marker: str = "tampermonkey"
    extension_marker: str = TAMPERMONKEY_EXTENSION_ID
    editor_marker: str = "editor"


DEFAULT_WEIGHTS = SelectorWeights()


def list_targets(config: SyncConfig) -> list[TargetDescriptor]:
    """Fetch the DevTools target listing."""
    url = config.list_url
    try:
        resp = http_get(url, config)
    except HttpClientError as exc:
        raise ListUnavailable(
            f"Could not reach DevTools endpoint: {exc}",
            suggestion="Start Chrome with --remote-debugging-port=9222 or pass --cdp-http",
            details={"url": url, "status": exc.status},
        ) from exc

    status = resp.get("status")
    if not isinstance(status, int) or not 200 <= status < 300:
        raise ListUnavailable(f"Request failed ({status}): {url}", details={"url": url, "status": status})
    if resp.get("truncated"):
        raise ListMalformed(f"Target listing exceeds {config.http_max_bytes} bytes: {url}")

    try:
        payload = json.loads(str(resp.get("body") or ""))
    except json.JSONDecodeError as exc:
        raise ListMalformed(f"Target listing is not JSON: {exc}", details={"url": url}) from exc
    if not isinstance(payload, list):
        raise ListMalformed("Target listing is not a JSON array", details={"url": url})

    targets = [TargetDescriptor.from_json(item) for item in payload if isinstance(item, dict)]
    logger.debug("listed %d targets from %s", len(targets), url)
    return targets


def score_target(target: TargetDescriptor, hint: str = "", weights: SelectorWeights = DEFAULT_WEIGHTS) -> int:
    """Score one target; 0 means "not a candidate". Uncontrollable targets always score 0."""
    if not target.controllable:
        return 0
    url = (target.url or "").lower()
    title = (target.title or "").lower()
    match = (hint or "").strip().lower()

    score = 0
    if weights.origin_marker in url:
        score += weights.extension_origin
    if weights.tool_marker in url or weights.tool_marker in title:
        score += weights.tool_name
    if weights.extension_marker in url:
        score += weights.extension_id
    if weights.editor_marker in url:
        score += weights.editor_in_url
    if weights.editor_marker in title:
        score += weights.editor_in_title
    if match and (match in url or match in title):
        score += weights.hint
    return score


def rank_targets(
    candidates: Iterable[TargetDescriptor],
    hint: str = "",
    weights: SelectorWeights = DEFAULT_WEIGHTS,
) -> list[ScoredCandidate]:
    """Return scoring candidates, best first. Equal scores keep input order."""
    scored = []
    for target in candidates:
        score = score_target(target, hint, weights)
        if score > 0:
            scored.append(ScoredCandidate(target=target, score=score))
    # sorted() is stable, so ties stay in listing order.
    return sorted(scored, key=lambda c: c.score, reverse=True)


def select_target(
    candidates: Iterable[TargetDescriptor],
    hint: str = "",
    weights: SelectorWeights = DEFAULT_WEIGHTS,
) -> TargetDescriptor | None:
    ranked = rank_targets(candidates, hint, weights)
    return ranked[0].target if ranked else None


__all__ = [
    "DEFAULT_WEIGHTS",
    "ScoredCandidate",
    "SelectorWeights",
    "TAMPERMONKEY_EXTENSION_ID",
    "TargetDescriptor",
    "list_targets",
    "rank_targets",
    "score_target",
    "select_target",
]
