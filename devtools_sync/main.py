"""
Command-line entry point.

Sync a local userscript into the Tampermonkey editor via the Chrome DevTools Protocol.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from .config import DEFAULT_SCRIPT_FILE, SyncConfig
from .errors import SyncError
from .inject import SAVE_METHOD_KEYBOARD
from .sync import sync_script
from .targets import list_targets, rank_targets

logger = logging.getLogger("devtools_sync")

EPILOG = """\
Before running:
  1) Start Chrome with --remote-debugging-port=9222
  2) Open Tampermonkey script editor tab for your script
"""


def build_parser(defaults: SyncConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devtools-sync",
        description="Sync local userscript into Tampermonkey editor via Chrome DevTools Protocol.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-f", "--file", default=DEFAULT_SCRIPT_FILE, help="Local script path (default: %(default)s)")
    parser.add_argument("--cdp-http", default=defaults.cdp_http, help="CDP HTTP endpoint (default: %(default)s)")
    parser.add_argument(
        "--target",
        default=defaults.target_hint,
        help="Extra URL/title match to pick a specific Tampermonkey tab",
    )
    parser.add_argument("--list", action="store_true", help="Print ranked candidate tabs and exit")
    parser.add_argument(
        "--verify",
        action="store_true",
        default=defaults.verify,
        help="Read the editor back after saving and compare",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    return parser


def _print_candidates(config: SyncConfig) -> None:
    ranked = rank_targets(list_targets(config), config.target_hint)
    if not ranked:
        print("No candidate tabs.")
        return
    for cand in ranked:
        print(f"{cand.score:>3}  {cand.target.id}  {cand.target.title}  {cand.target.url}")


def run(argv: Sequence[str] | None = None) -> int:
    defaults = SyncConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if not args.file:
        raise SyncError("Missing --file value")
    if not args.cdp_http:
        raise SyncError("Missing --cdp-http value")
    config = replace(defaults, cdp_http=args.cdp_http, target_hint=args.target or "", verify=bool(args.verify))

    if args.list:
        _print_candidates(config)
        return 0

    path = Path(args.file).expanduser().resolve()
    source = path.read_text(encoding="utf-8")

    report = sync_script(config, source)
    print(f"Updated and saved Tampermonkey script from {args.file}")
    print(f"Target tab: {report.title}")
    print(f"Target URL: {report.url}")
    print(f"Save strategy: {report.outcome.save_method}")
    if report.outcome.save_method == SAVE_METHOD_KEYBOARD:
        print("Note: save was sent as a keyboard shortcut and could not be confirmed.")
    if report.verified:
        print("Verified: editor content matches the local file.")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    try:
        code = run(argv)
    except (SyncError, OSError, UnicodeDecodeError) as exc:
        logger.debug("sync failed", exc_info=True)
        print(f"devtools-sync failed: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
