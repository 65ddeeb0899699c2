from __future__ import annotations

import http.client
import urllib.parse
from urllib.error import HTTPError, URLError
from urllib.request import Request, build_opener

from .config import SyncConfig


class HttpClientError(Exception):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _build_request(url: str) -> Request:
    try:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported")
        return Request(url, headers={"User-Agent": "devtools-sync/1.0", "Accept": "application/json"})
    except ValueError as exc:
        raise HttpClientError(f"Invalid URL {url!r}: {exc}") from exc


def http_get(url: str, config: SyncConfig) -> dict[str, object]:
    req = _build_request(url)
    try:
        opener = build_opener()
        with opener.open(req, timeout=config.http_timeout) as resp:
            body = resp.read(config.http_max_bytes + 1)
            truncated = len(body) > config.http_max_bytes
            if truncated:
                body = body[: config.http_max_bytes]
            return {
                "status": resp.status,
                "headers": dict(resp.headers),
                "body": body.decode(errors="replace"),
                "truncated": truncated,
            }
    except HTTPError as exc:
        # urllib raises for non-2xx before we see the body.
        raise HttpClientError(f"Request failed ({exc.code}): {url}", status=exc.code) from exc
    except (TimeoutError, URLError, OSError, http.client.HTTPException) as exc:
        raise HttpClientError(str(exc)) from exc
    except ValueError as exc:
        # Bad port and similar address errors surface from http.client as ValueError.
        raise HttpClientError(f"Invalid URL {url!r}: {exc}") from exc
