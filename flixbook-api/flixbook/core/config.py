# flixbook/core/config.py
# Loads Flixbook settings from a TOML file (defaults + overrides).
# - Reads FLIXBOOK_CONFIG or searches for flixbook.toml (CWD, parents, next to this file)
# - Normalizes extension lists (lowercase, ensure leading dot)
# - [categories] keeps its declaration order; that order is the row order
# - get_settings() is cached per process and doubles as a FastAPI dependency

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import tomli as tomllib  # py3.11+: tomllib in stdlib; using tomli for compatibility

LOGGER = logging.getLogger("flixbook.config")


# -------------------- Defaults (used if TOML omits keys) --------------------
_DEFAULTS = {
    "paths": {
        "media_root": "public",
        "gallery_subdir": "gallery",
        "hero_subdir": "hero",
        "sidecar": "meta.json",
    },
    "urls": {
        "gallery_prefix": "/gallery",
        "hero_prefix": "/hero",
    },
    "categories": {
        "moments": "Top Moments • Director's Cut",
        "trips": "Trips & Adventures",
        "food": "Food & Coffee Stories",
        "jokes": "Inside Jokes Playlist",
    },
    "ext": {
        "image": ["jpg", "jpeg", "png", "webp", "gif", "svg"],
        "video": ["mp4", "webm", "mov"],
        # probe order for a video's same-stem poster
        "poster": ["jpg", "jpeg", "png", "webp"],
    },
    "dates": {
        "min_year": 2008,
        "max_year": 2100,
        "unix_min": "2008-01-01",   # UTC
        "future_skew_days": 7,
    },
    "scan": {
        "timeout_seconds": 5.0,
    },
    "api": {
        # CORS (allow the front-end dev server)
        "cors_origins": ["http://localhost:3000", "http://127.0.0.1:3000"],
    },
    "logging": {
        "level": "INFO",
        "json": False,
        "dir": "",                  # empty = console only
    },
}


# -------------------- Read + merge TOML --------------------

def _find_config_path() -> Optional[Path]:
    """Find flixbook.toml without user input.
    Priority:
      1) FLIXBOOK_CONFIG
      2) ./flixbook.toml (CWD)
      3) ascend parents from CWD looking for flixbook.toml
      4) flixbook.toml next to this file
    """
    cfg_env = os.getenv("FLIXBOOK_CONFIG")
    if cfg_env:
        p = Path(cfg_env).expanduser()
        if p.exists():
            return p

    # CWD first, then walk up to the filesystem root
    cur = Path.cwd()
    while True:
        candidate = cur / "flixbook.toml"
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break
        cur = cur.parent

    app_default = Path(__file__).with_name("flixbook.toml")
    if app_default.exists():
        return app_default

    return None


def load_config_toml(path: Optional[Path] = None) -> dict:
    """Load TOML from `path` (or the best match) and return {} if absent or unreadable."""
    path = path or _find_config_path()
    if not path or not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        LOGGER.warning(f"Ignoring unreadable config {path}: {e}")
        return {}


def _norm_ext_list(exts: List[str]) -> List[str]:
    """
    Normalize extension strings: ensure leading dot and lowercase.
    Accepts 'jpg' or '.jpg' and returns '.jpg'. Order is preserved, duplicates dropped.
    """
    out: List[str] = []
    for e in exts:
        e = str(e or "").strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        if e not in out:
            out.append(e)
    return out


def _parse_utc_day(value: str) -> datetime:
    """'2008-01-01' -> aware UTC midnight."""
    dt = datetime.fromisoformat(str(value).strip())
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class GallerySettings:
    """
    Merged configuration for one process.
    Relative media_root is resolved against the CWD, like any other path on the command line.
    """
    def __init__(self, cfg: Optional[dict] = None) -> None:
        cfg = cfg or {}

        paths = {**_DEFAULTS["paths"], **cfg.get("paths", {})}
        self.media_root: Path = Path(paths["media_root"]).expanduser().resolve()
        self.gallery_dir: Path = self.media_root / paths["gallery_subdir"]
        self.hero_dir: Path = self.media_root / paths["hero_subdir"]
        self.sidecar_name: str = str(paths["sidecar"])

        urls = {**_DEFAULTS["urls"], **cfg.get("urls", {})}
        self.gallery_prefix: str = str(urls["gallery_prefix"]).rstrip("/")
        self.hero_prefix: str = str(urls["hero_prefix"]).rstrip("/")

        # A [categories] table replaces the default one wholesale; merging would mix orders.
        cats = cfg.get("categories") or _DEFAULTS["categories"]
        self.categories: Dict[str, str] = {str(k): str(v) for k, v in cats.items()}

        ext_cfg = {**_DEFAULTS["ext"], **cfg.get("ext", {})}
        self.image_ext: List[str] = _norm_ext_list(list(ext_cfg.get("image", [])))
        self.video_ext: List[str] = _norm_ext_list(list(ext_cfg.get("video", [])))
        self.poster_ext: List[str] = _norm_ext_list(list(ext_cfg.get("poster", [])))

        dates = {**_DEFAULTS["dates"], **cfg.get("dates", {})}
        self.min_year: int = int(dates["min_year"])
        self.max_year: int = int(dates["max_year"])
        self.unix_min: datetime = _parse_utc_day(dates["unix_min"])
        self.future_skew_days: float = float(dates["future_skew_days"])

        scan = {**_DEFAULTS["scan"], **cfg.get("scan", {})}
        self.scan_timeout: float = float(scan["timeout_seconds"])

        api = {**_DEFAULTS["api"], **cfg.get("api", {})}
        self.cors_origins: List[str] = [str(o) for o in api.get("cors_origins", [])]

        log_cfg = {**_DEFAULTS["logging"], **cfg.get("logging", {})}
        self.log_level: str = str(log_cfg["level"]).upper()
        self.json_logs: bool = bool(log_cfg["json"])
        self.logs_dir: Optional[Path] = Path(log_cfg["dir"]).expanduser() if log_cfg["dir"] else None

    @property
    def media_ext(self) -> List[str]:
        return self.image_ext + self.video_ext

    def __repr__(self) -> str:
        return (
            f"GallerySettings(media_root={self.media_root}, categories={list(self.categories)}, "
            f"scan_timeout={self.scan_timeout}, min_year={self.min_year}, max_year={self.max_year}, "
            f"future_skew_days={self.future_skew_days})"
        )


def load_settings(path: Optional[Path] = None, *, media_root: Optional[str] = None) -> GallerySettings:
    """
    Build settings from TOML.
    `media_root` (e.g. from the CLI), then FLIXBOOK_MEDIA_ROOT, win over [paths].media_root.
    """
    cfg = load_config_toml(path)
    media_root = media_root or os.getenv("FLIXBOOK_MEDIA_ROOT")
    if media_root:
        cfg = {**cfg, "paths": {**cfg.get("paths", {}), "media_root": media_root}}
    return GallerySettings(cfg)


@lru_cache(maxsize=1)
def get_settings() -> GallerySettings:
    return load_settings()
