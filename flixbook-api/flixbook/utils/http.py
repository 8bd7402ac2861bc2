# flixbook/utils/http.py
from pathlib import Path
from typing import Optional
import urllib.parse

# Characters a browser's encodeURIComponent leaves alone (besides A-Z a-z 0-9 - _ . ~)
_URI_COMPONENT_SAFE = "!*'()"


def safe_rel_under(base: Path, target: Path) -> Optional[Path]:
    """
    Return target's path relative to base if target is inside base, else None.
    Prevents path traversal (including through symlinks, since both sides are resolved).
    """
    try:
        return target.resolve().relative_to(base.resolve())
    except (OSError, RuntimeError, ValueError):
        return None


def quote_segment(name: str) -> str:
    """Percent-encode a single path segment ('a b#1.jpg' -> 'a%20b%231.jpg')."""
    return urllib.parse.quote(name, safe=_URI_COMPONENT_SAFE)


def media_url(prefix: str, *segments: str) -> str:
    """Join a URL prefix and raw path segments, encoding each segment."""
    parts = [prefix.rstrip("/")] + [quote_segment(s) for s in segments]
    return "/".join(parts)
