#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Flixbook CLI: build or inspect the gallery payload without running the API.

Examples:
  # print the same JSON the API serves (media root from flixbook.toml or --media-root)
  ./scripts/flixbook_cli.py build --media-root ./public --indent 2

  # write it next to a static front-end build
  ./scripts/flixbook_cli.py build --out ./out/gallery.json

  # why did a file get that date/title?
  ./scripts/flixbook_cli.py explain trips food

  # run the API with uvicorn
  ./scripts/flixbook_cli.py serve --port 8000

Exit codes: 0 on success, 1 when the gallery cannot be read at all.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from flixbook.core.config import GallerySettings, load_settings
from flixbook.core.logging_utils import setup_logging
from flixbook.schemas.gallery import GalleryError
from flixbook.services.indexer import gallery_payload, iter_category, safe_build_gallery

LOGGER = logging.getLogger("flixbook.cli")

# ------- tiny table printer -------

def _stringify(x):
    if x is None:
        return ""
    return str(x)

def print_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
    widths = [len(h) for h in headers]
    srows = []
    for row in rows:
        srow = [_stringify(v) for v in row]
        srows.append(srow)
        for i, v in enumerate(srow):
            widths[i] = max(widths[i], len(v))

    def fmt_row(vals):
        return "  " + " | ".join(v.ljust(widths[i]) for i, v in enumerate(vals))

    print(fmt_row(list(headers)))
    print("  " + "-+-".join("-" * w for w in widths))
    for r in srows:
        print(fmt_row(r))

# ------- commands -------

def cmd_build(settings: GallerySettings, args) -> int:
    result = safe_build_gallery(settings)
    text = json.dumps(gallery_payload(result), ensure_ascii=False, indent=args.indent)
    if args.out:
        out = Path(args.out).expanduser()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        LOGGER.info(f"Wrote {out}")
    else:
        print(text)
    return 1 if isinstance(result, GalleryError) else 0

def cmd_explain(settings: GallerySettings, args) -> int:
    keys: List[str] = args.categories or list(settings.categories)
    unknown = [k for k in keys if k not in settings.categories]
    if unknown:
        LOGGER.error(f"Unknown categories: {', '.join(unknown)} (known: {', '.join(settings.categories)})")
        return 2

    for key in keys:
        print(f"\n[{key}] {settings.categories[key]}  ({settings.gallery_dir / key})")
        rows = []
        for entry in iter_category(key, settings):
            it = entry.item
            when = (datetime.fromtimestamp(it.timestamp_ms / 1000).isoformat(sep=" ", timespec="seconds")
                    if it.timestamp_ms else "")
            rows.append((it.id, entry.name, it.kind, entry.date_source, when, it.title,
                         "yes" if entry.override.model_dump(exclude_none=True) else ""))
        print_table(["id", "file", "kind", "date from", "date", "title", "sidecar"], rows)
    return 0

def cmd_serve(settings: GallerySettings, args) -> int:
    import uvicorn
    # the app loads its own settings; hand ours over through the environment
    if args.config:
        os.environ["FLIXBOOK_CONFIG"] = str(Path(args.config).expanduser().resolve())
    os.environ["FLIXBOOK_MEDIA_ROOT"] = str(settings.media_root)
    uvicorn.run("flixbook.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0

# ------- main -------

def _console_level(args) -> str:
    if args.log_level:
        return args.log_level
    if args.quiet:
        return "ERROR"
    if args.verbose >= 2:
        return "DEBUG"
    if args.verbose >= 1:
        return "INFO"
    return "WARNING"

def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Flixbook gallery tools")
    ap.add_argument("--config", help="Path to flixbook.toml (default: FLIXBOOK_CONFIG or search from CWD)")
    ap.add_argument("--media-root", help="Media root containing gallery/ and hero/ (overrides config)")
    ap.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    help="Force log level (overrides -v/-q)")
    ap.add_argument("-v", "--verbose", action="count", default=0,
                    help="Increase verbosity (repeatable)")
    ap.add_argument("-q", "--quiet", action="store_true", help="Errors only")
    ap.add_argument("--logs-dir", default=None, help="Also write rotating log files here")
    ap.add_argument("--json-logs", action="store_true", help="JSON-formatted log files")
    sub = ap.add_subparsers(dest="cmd", required=True)

    spb = sub.add_parser("build", help="Print or write the gallery JSON payload")
    spb.add_argument("--out", help="Write to this file instead of stdout")
    spb.add_argument("--indent", type=int, default=None, help="Pretty-print with N spaces")
    spb.set_defaults(func=cmd_build)

    spe = sub.add_parser("explain", help="Show how each file's date and title were derived")
    spe.add_argument("categories", nargs="*", help="Category keys (default: all)")
    spe.set_defaults(func=cmd_explain)

    sps = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    sps.add_argument("--host", default="127.0.0.1")
    sps.add_argument("--port", type=int, default=8000)
    sps.add_argument("--reload", action="store_true")
    sps.set_defaults(func=cmd_serve)

    args = ap.parse_args(argv)

    setup_logging(_console_level(args), json_logs=args.json_logs,
                  logs_dir=Path(args.logs_dir) if args.logs_dir else None)

    settings = load_settings(Path(args.config).expanduser() if args.config else None,
                             media_root=args.media_root)
    LOGGER.debug(f"Settings: {settings!r}")
    return args.func(settings, args)

if __name__ == "__main__":
    sys.exit(main())
